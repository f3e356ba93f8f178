import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Result",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("student_id", models.IntegerField()),
                ("course_id", models.IntegerField()),
                ("mid_exam_score", models.FloatField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(0.0)])),
                ("final_exam_score", models.FloatField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(0.0)])),
                ("assignment_score", models.FloatField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(0.0)])),
                ("overall_score", models.FloatField(blank=True, null=True)),
                ("grade", models.CharField(blank=True, choices=[("A+", "A+"), ("A", "A"), ("A-", "A-"), ("B+", "B+"), ("B", "B"), ("B-", "B-"), ("C+", "C+"), ("C", "C"), ("C-", "C-"), ("D", "D"), ("F", "F")], max_length=2, null=True)),
                ("visible_to_student", models.BooleanField(default=False)),
                ("made_visible_by", models.IntegerField(blank=True, null=True)),
                ("made_visible_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["course_id", "student_id"],
                "unique_together": {("student_id", "course_id")},
            },
        ),
    ]
