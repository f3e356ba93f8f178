from django.core.validators import MinValueValidator
from django.db import models

from .grading import Grade


class Result(models.Model):
    student_id = models.IntegerField()
    course_id = models.IntegerField()
    mid_exam_score = models.FloatField(null=True, blank=True, validators=[MinValueValidator(0.0)])
    final_exam_score = models.FloatField(null=True, blank=True, validators=[MinValueValidator(0.0)])
    assignment_score = models.FloatField(null=True, blank=True, validators=[MinValueValidator(0.0)])
    overall_score = models.FloatField(null=True, blank=True)
    grade = models.CharField(max_length=2, choices=Grade.choices, null=True, blank=True)
    visible_to_student = models.BooleanField(default=False)
    made_visible_by = models.IntegerField(null=True, blank=True)  # teacher id
    made_visible_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ("student_id", "course_id")
        ordering = ["course_id", "student_id"]

    def __str__(self):
        return f"student {self.student_id} - course {self.course_id}: {self.grade}"
