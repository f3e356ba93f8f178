"""
Session store: one ``ExamSession`` per (student, exam), created lazily.
"""
import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .availability import ensure_active
from .errors import AlreadySubmitted, Forbidden, NotFound
from .models import Exam, ExamSession

logger = logging.getLogger(__name__)


def _find_session(student_id, exam):
    return ExamSession.objects.filter(student_id=student_id, exam=exam).first()


def get_or_create_session(student_id, exam, now=None):
    """
    Return ``(session, created)``. Lookup first; when two ingress paths race
    on the insert, the unique (student_id, exam) key rejects the loser, which
    then reads the winner's row.
    """
    session = _find_session(student_id, exam)
    if session is not None:
        return session, False
    try:
        with transaction.atomic():
            session = ExamSession.objects.create(
                student_id=student_id,
                exam=exam,
                started_at=now or timezone.now(),
            )
    except IntegrityError:
        logger.info("Session for student %s exam %s created concurrently", student_id, exam.id)
        return ExamSession.objects.get(student_id=student_id, exam=exam), False
    logger.info("Opened session %s for student %s exam %s", session.id, student_id, exam.id)
    return session, True


def get_exam(exam_id):
    try:
        return Exam.objects.get(id=exam_id)
    except Exam.DoesNotExist:
        raise NotFound("Exam not found")


def open_session(student_id, exam, now=None):
    """Explicit open: the exam must be active and the student not yet submitted."""
    now = now or timezone.now()
    ensure_active(exam, now)
    session, created = get_or_create_session(student_id, exam, now=now)
    if session.is_submitted:
        raise AlreadySubmitted()
    return session, created


def get_session(session_id):
    try:
        return ExamSession.objects.select_related("exam").get(id=session_id)
    except ExamSession.DoesNotExist:
        raise NotFound("Exam session not found")


def ensure_owner(session, student_id):
    if session.student_id != student_id:
        raise Forbidden("You can only access your own exam sessions")


def read_session_for_student(session_id, student_id, now=None):
    """
    A submitted session stays readable so the student can see the score;
    an open one is only readable while the exam is active.
    """
    session = get_session(session_id)
    ensure_owner(session, student_id)
    if not session.is_submitted:
        ensure_active(session.exam, now or timezone.now())
    return session


def submit_session(session_id, student_id, now=None):
    with transaction.atomic():
        try:
            session = ExamSession.objects.select_for_update().get(id=session_id)
        except ExamSession.DoesNotExist:
            raise NotFound("Exam session not found")
        ensure_owner(session, student_id)
        if session.is_submitted:
            raise AlreadySubmitted()
        session.submitted_at = now or timezone.now()
        session.save(update_fields=["submitted_at"])
    logger.info("Session %s submitted by student %s", session.id, student_id)
    return session


def submitted_session_exists(student_id, exam):
    return ExamSession.objects.filter(
        student_id=student_id, exam=exam, submitted_at__isnull=False
    ).exists()
