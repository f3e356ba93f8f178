import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from exam_service.permission import Capability, Role, has_capability

from .availability import ensure_active, filter_active
from .errors import AlreadySubmitted, Conflict, Forbidden
from .models import Exam
from .sessions import get_exam, submitted_session_exists

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ("start_time", "duration")


def ensure_exam_teacher(exam, teacher_id):
    if exam.teacher_id != teacher_id:
        raise Forbidden("You can only manage exams you created")


def create_exam(teacher_id, data):
    try:
        with transaction.atomic():
            exam = Exam.objects.create(teacher_id=teacher_id, **data)
    except IntegrityError:
        raise Conflict("An exam with this title already exists for this class")
    logger.info("Teacher %s created exam %s", teacher_id, exam.id)
    return exam


def update_exam(exam, teacher_id, changes):
    ensure_exam_teacher(exam, teacher_id)
    rescheduling = any(
        field in changes and changes[field] != getattr(exam, field)
        for field in SCHEDULE_FIELDS
    )
    if rescheduling and exam.sessions.exists():
        raise Conflict("An exam cannot be rescheduled once students have started it")
    for field, value in changes.items():
        setattr(exam, field, value)
    try:
        with transaction.atomic():
            exam.save()
    except IntegrityError:
        raise Conflict("An exam with this title already exists for this class")
    return exam


def exams_for_user(user, now=None, course_id=None, title=None):
    """
    Exams listed to ``user``: active ones for students, own ones for teachers.
    ``course_id`` and ``title`` narrow the listing.
    """
    now = now or timezone.now()
    exams = Exam.objects.all()
    if course_id is not None:
        exams = exams.filter(course_id=course_id)
    if title:
        exams = exams.filter(title=title)
    if has_capability(user, Capability.TAKE_EXAMS):
        # the query narrows; the half-open window is decided here
        return filter_active(exams.running_at(now).order_by("start_time"), now)
    if has_capability(user, Capability.VIEW_ALL_EXAMS):
        return list(exams)
    if has_capability(user, Capability.MANAGE_EXAMS):
        return list(exams.filter(teacher_id=user.teacher_id))
    raise Forbidden()


def exam_for_user(exam_id, user, now=None):
    """
    Single lookup. Students are told apart: not yet available, ended, or
    already submitted.
    """
    exam = get_exam(exam_id)
    if user.role == Role.STUDENT:
        now = now or timezone.now()
        ensure_active(exam, now)
        if submitted_session_exists(user.student_id, exam):
            raise AlreadySubmitted("You have already submitted this exam. Access denied.")
    elif user.role == Role.TEACHER:
        ensure_exam_teacher(exam, user.teacher_id)
    elif not has_capability(user, Capability.VIEW_ALL_EXAMS):
        raise Forbidden()
    return exam
