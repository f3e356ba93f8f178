from datetime import timedelta

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import DateTimeField, DurationField, ExpressionWrapper, F, Value


class ExamKind(models.TextChoices):
    MIDTERM = "midterm", "Mid-exam"
    FINAL = "final", "Final-exam"
    QUIZ = "quiz", "Quiz"


class Option(models.TextChoices):
    A = "A", "Option A"
    B = "B", "Option B"
    C = "C", "Option C"
    D = "D", "Option D"


class ExamQuerySet(models.QuerySet):
    def with_end_time(self):
        minutes = ExpressionWrapper(F("duration") * Value(timedelta(minutes=1)), output_field=DurationField())
        return self.annotate(
            ends_at=ExpressionWrapper(F("start_time") + minutes, output_field=DateTimeField())
        )

    def running_at(self, now):
        """Exams whose window [start_time, end_time) contains ``now``."""
        return self.with_end_time().filter(start_time__lte=now, ends_at__gt=now)


class Exam(models.Model):
    # course, class and teacher records live in other services
    course_id = models.IntegerField()
    class_id = models.IntegerField()
    teacher_id = models.IntegerField()
    title = models.CharField(max_length=20, choices=ExamKind.choices)
    start_time = models.DateTimeField()
    duration = models.PositiveIntegerField(validators=[MinValueValidator(1)])  # minutes
    created_at = models.DateTimeField(auto_now_add=True)

    objects = ExamQuerySet.as_manager()

    class Meta:
        # one exam of each kind per class: results hold a single slot per kind
        unique_together = ("class_id", "title")
        ordering = ["-created_at"]

    @property
    def end_time(self):
        return self.start_time + timedelta(minutes=self.duration)

    def __str__(self):
        return f"{self.get_title_display()} (course {self.course_id})"


class Question(models.Model):
    exam = models.ForeignKey(Exam, related_name="questions", on_delete=models.CASCADE)
    text = models.TextField()
    option_a = models.CharField(max_length=255)
    option_b = models.CharField(max_length=255)
    option_c = models.CharField(max_length=255)
    option_d = models.CharField(max_length=255)
    correct_option = models.CharField(max_length=1, choices=Option.choices)
    weight = models.FloatField(default=1.0, validators=[MinValueValidator(0.0)])

    class Meta:
        unique_together = ("exam", "text")
        ordering = ["id"]

    def __str__(self):
        return self.text[:50]


class ExamSession(models.Model):
    exam = models.ForeignKey(Exam, related_name="sessions", on_delete=models.CASCADE)
    student_id = models.IntegerField()
    started_at = models.DateTimeField()
    submitted_at = models.DateTimeField(null=True, blank=True)
    score = models.FloatField(null=True, blank=True)
    max_score = models.FloatField(null=True, blank=True)

    class Meta:
        unique_together = ("student_id", "exam")

    @property
    def is_submitted(self):
        return self.submitted_at is not None

    def __str__(self):
        return f"student {self.student_id} - exam {self.exam_id}"


class Answer(models.Model):
    session = models.ForeignKey(ExamSession, related_name="answers", on_delete=models.CASCADE)
    question = models.ForeignKey(Question, related_name="answers", on_delete=models.CASCADE)
    selected_option = models.CharField(max_length=1, choices=Option.choices)

    class Meta:
        unique_together = ("session", "question")
