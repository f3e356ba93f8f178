from django.db import models


class Grade(models.TextChoices):
    A_PLUS = "A+", "A+"
    A = "A", "A"
    A_MINUS = "A-", "A-"
    B_PLUS = "B+", "B+"
    B = "B", "B"
    B_MINUS = "B-", "B-"
    C_PLUS = "C+", "C+"
    C = "C", "C"
    C_MINUS = "C-", "C-"
    D = "D", "D"
    F = "F", "F"


# evaluated top-down, first match wins
GRADE_THRESHOLDS = (
    (90, Grade.A_PLUS),
    (85, Grade.A),
    (80, Grade.A_MINUS),
    (75, Grade.B_PLUS),
    (70, Grade.B),
    (65, Grade.B_MINUS),
    (60, Grade.C_PLUS),
    (50, Grade.C),
    (45, Grade.C_MINUS),
    (40, Grade.D),
)


def grade_for(overall_score):
    if overall_score is None:
        return None
    for threshold, grade in GRADE_THRESHOLDS:
        if overall_score >= threshold:
            return grade
    return Grade.F
