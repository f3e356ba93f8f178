"""
Result aggregator: folds exam scores into the per (student, course) result
and derives the overall score and grade. Visibility is only ever changed by
``set_visibility``.
"""
import logging

from django.db import transaction
from django.utils import timezone

from exam_service.permission import Capability, Role, has_capability
from exams.errors import Forbidden, InvalidInput, NotFound
from exams.models import Exam, ExamKind, ExamSession

from .grading import grade_for
from .models import Result

logger = logging.getLogger(__name__)

EXAM_KIND_FIELDS = {
    ExamKind.MIDTERM: "mid_exam_score",
    ExamKind.FINAL: "final_exam_score",
}
COMPONENT_FIELDS = ("mid_exam_score", "final_exam_score", "assignment_score")
EDITABLE_FIELDS = COMPONENT_FIELDS


def unslotted_exam_scores(student_id, course_id):
    """Scores of submitted sessions whose exam kind has no field on ``Result``."""
    return list(
        ExamSession.objects.filter(
            student_id=student_id,
            exam__course_id=course_id,
            submitted_at__isnull=False,
            score__isnull=False,
        )
        .exclude(exam__title__in=list(EXAM_KIND_FIELDS))
        .values_list("score", flat=True)
    )


def recalculate(result):
    scores = [getattr(result, field) for field in COMPONENT_FIELDS]
    scores.extend(unslotted_exam_scores(result.student_id, result.course_id))
    present = [score for score in scores if score is not None]
    result.overall_score = sum(present) if present else None
    result.grade = grade_for(result.overall_score)
    return result


def fold_score(student_id, course_id, exam_kind, score):
    with transaction.atomic():
        result, created = Result.objects.select_for_update().get_or_create(
            student_id=student_id, course_id=course_id
        )
        field = EXAM_KIND_FIELDS.get(exam_kind)
        if field is not None:
            setattr(result, field, score)
        else:
            logger.info(
                "Exam kind %r has no result field; student %s course %s counted in overall only",
                exam_kind, student_id, course_id,
            )
        recalculate(result)
        result.save()
    logger.info(
        "%s result %s: overall=%s grade=%s",
        "Created" if created else "Updated", result.id, result.overall_score, result.grade,
    )
    return result


def teaches_course(teacher_id, course_id):
    return Exam.objects.filter(teacher_id=teacher_id, course_id=course_id).exists()


def ensure_course_teacher(result, teacher_id):
    if not teaches_course(teacher_id, result.course_id):
        raise Forbidden("You can only manage results for courses you examine")


def get_result(result_id):
    try:
        return Result.objects.get(id=result_id)
    except Result.DoesNotExist:
        raise NotFound("Result not found")


def update_result(result, teacher_id, changes):
    ensure_course_teacher(result, teacher_id)
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidInput(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    with transaction.atomic():
        for field, value in changes.items():
            if value is not None and value < 0:
                raise InvalidInput(f"{field} must be 0 or greater")
            setattr(result, field, value)
        recalculate(result)
        result.save()
    return result


def set_visibility(result, visible, teacher_id, now=None):
    ensure_course_teacher(result, teacher_id)
    result.visible_to_student = bool(visible)
    update_fields = ["visible_to_student"]
    if result.visible_to_student:
        result.made_visible_by = teacher_id
        result.made_visible_at = now or timezone.now()
        update_fields += ["made_visible_by", "made_visible_at"]
    result.save(update_fields=update_fields)
    logger.info(
        "Result %s %s by teacher %s",
        result.id, "revealed" if result.visible_to_student else "hidden", teacher_id,
    )
    return result


def visible_results_for_student(student_id):
    return Result.objects.filter(student_id=student_id, visible_to_student=True)


def results_for_user(user):
    if has_capability(user, Capability.VIEW_OWN_RESULTS):
        return visible_results_for_student(user.student_id)
    if has_capability(user, Capability.VIEW_ALL_RESULTS):
        return Result.objects.all()
    if has_capability(user, Capability.MANAGE_RESULTS):
        course_ids = Exam.objects.filter(teacher_id=user.teacher_id).values("course_id")
        return Result.objects.filter(course_id__in=course_ids)
    raise Forbidden()


def result_for_user(result_id, user):
    result = get_result(result_id)
    if user.role == Role.STUDENT:
        if result.student_id != user.student_id or not result.visible_to_student:
            raise NotFound("Result not found")
    elif user.role == Role.TEACHER:
        ensure_course_teacher(result, user.teacher_id)
    elif not has_capability(user, Capability.VIEW_ALL_RESULTS):
        raise Forbidden()
    return result
