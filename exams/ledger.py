"""
Answer ledger: at most one ``Answer`` per (session, question).

Both the HTTP endpoint and the real-time consumer go through
``record_answer``; the session row lock and the unique keys are the only
coordination between them.
"""
import logging

from django.db import transaction
from django.utils import timezone

from .availability import ensure_active
from .errors import InvalidInput, NotFound, SessionClosed
from .models import Answer, ExamSession, Question
from .sessions import ensure_owner, get_exam, get_or_create_session
from .validators import validate_id, validate_option

logger = logging.getLogger(__name__)


def upsert_answer(session, question, selected_option, student_id, now=None):
    """
    Write ``selected_option`` for ``question`` in ``session``. Repeated calls
    converge on the latest value.
    """
    validate_option(selected_option)
    ensure_owner(session, student_id)
    if question.exam_id != session.exam_id:
        raise InvalidInput("Question does not belong to this exam")

    now = now or timezone.now()
    with transaction.atomic():
        # serialises against submit_session on the same row
        locked = ExamSession.objects.select_for_update().select_related("exam").get(pk=session.pk)
        if locked.is_submitted:
            raise SessionClosed()
        ensure_active(locked.exam, now)
        answer, created = Answer.objects.update_or_create(
            session=locked,
            question=question,
            defaults={"selected_option": selected_option},
        )
    logger.debug(
        "%s answer %s for session %s question %s",
        "Created" if created else "Updated", answer.id, session.id, question.id,
    )
    return answer, created


def record_answer(student_id, exam_id, question_id, selected_option, now=None):
    """
    Keyed form used by both ingress paths: resolves the exam and question,
    lazily opens the session, then upserts.
    """
    if not student_id or not exam_id or not question_id or not selected_option:
        raise InvalidInput("student, exam, question and selected option are required")
    student_id = validate_id(student_id, "student_id")
    exam_id = validate_id(exam_id, "exam_id")
    question_id = validate_id(question_id, "question_id")
    validate_option(selected_option)
    now = now or timezone.now()

    exam = get_exam(exam_id)
    try:
        question = Question.objects.get(id=question_id, exam=exam)
    except Question.DoesNotExist:
        raise NotFound("Question not found for this exam")

    # no session row is created for a write that cannot land
    ensure_active(exam, now)
    session, _ = get_or_create_session(student_id, exam, now=now)
    answer, created = upsert_answer(session, question, selected_option, student_id, now=now)
    return session, answer, created
