import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Exam",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("course_id", models.IntegerField()),
                ("class_id", models.IntegerField()),
                ("teacher_id", models.IntegerField()),
                ("title", models.CharField(choices=[("midterm", "Mid-exam"), ("final", "Final-exam"), ("quiz", "Quiz")], max_length=20)),
                ("start_time", models.DateTimeField()),
                ("duration", models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "unique_together": {("class_id", "title")},
            },
        ),
        migrations.CreateModel(
            name="Question",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("text", models.TextField()),
                ("option_a", models.CharField(max_length=255)),
                ("option_b", models.CharField(max_length=255)),
                ("option_c", models.CharField(max_length=255)),
                ("option_d", models.CharField(max_length=255)),
                ("correct_option", models.CharField(choices=[("A", "Option A"), ("B", "Option B"), ("C", "Option C"), ("D", "Option D")], max_length=1)),
                ("weight", models.FloatField(default=1.0, validators=[django.core.validators.MinValueValidator(0.0)])),
                ("exam", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="questions", to="exams.exam")),
            ],
            options={
                "ordering": ["id"],
                "unique_together": {("exam", "text")},
            },
        ),
        migrations.CreateModel(
            name="ExamSession",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("student_id", models.IntegerField()),
                ("started_at", models.DateTimeField()),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("score", models.FloatField(blank=True, null=True)),
                ("max_score", models.FloatField(blank=True, null=True)),
                ("exam", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="sessions", to="exams.exam")),
            ],
            options={
                "unique_together": {("student_id", "exam")},
            },
        ),
        migrations.CreateModel(
            name="Answer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("selected_option", models.CharField(choices=[("A", "Option A"), ("B", "Option B"), ("C", "Option C"), ("D", "Option D")], max_length=1)),
                ("question", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="answers", to="exams.question")),
                ("session", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="answers", to="exams.examsession")),
            ],
            options={
                "unique_together": {("session", "question")},
            },
        ),
    ]
