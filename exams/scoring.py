"""
Scoring engine.

The maximum score of a session is the total weight of the questions the
student actually answered, not of every question in the exam: unanswered
questions count towards neither the score nor the maximum.
"""
import logging

from django.db import transaction
from django.dispatch import receiver

from results.services import fold_score

from .errors import Forbidden
from .models import Answer, ExamSession
from .sessions import ensure_owner, get_session
from .signals import correct_answer_changed

logger = logging.getLogger(__name__)


def compute_score(session):
    score = 0.0
    max_score = 0.0
    answers = Answer.objects.filter(session=session).select_related("question")
    for answer in answers:
        weight = answer.question.weight
        max_score += weight
        if answer.selected_option == answer.question.correct_option:
            score += weight
    return score, max_score


def score_session(session):
    """
    Compute and store ``score``/``max_score``. A submitted session's score is
    folded into the student's course result.
    """
    with transaction.atomic():
        score, max_score = compute_score(session)
        session.score = score
        session.max_score = max_score
        session.save(update_fields=["score", "max_score"])
        if session.is_submitted:
            fold_score(
                student_id=session.student_id,
                course_id=session.exam.course_id,
                exam_kind=session.exam.title,
                score=score,
            )
    logger.info("Session %s scored %s / %s", session.id, score, max_score)
    return score, max_score


def score_for_student(session_id, student_id):
    session = get_session(session_id)
    ensure_owner(session, student_id)
    if not session.is_submitted:
        raise Forbidden("Your score is available after you submit the exam")
    score_session(session)
    return session


def score_for_teacher(session_id, teacher_id):
    session = get_session(session_id)
    if session.exam.teacher_id != teacher_id:
        raise Forbidden("You can only score sessions of exams you created")
    score_session(session)
    return session


def affected_session_ids(question_id):
    return list(
        ExamSession.objects.filter(answers__question_id=question_id)
        .values_list("id", flat=True)
        .distinct()
    )


def recompute_sessions_for_question(question_id):
    """
    Re-score every session holding an answer to ``question_id``. Each session
    is handled on its own; one failure is logged and does not stop the rest.
    Returns ``(recomputed_ids, failed_ids)``.
    """
    recomputed, failed = [], []
    for session_id in affected_session_ids(question_id):
        try:
            session = ExamSession.objects.select_related("exam").get(pk=session_id)
            score_session(session)
            recomputed.append(session_id)
        except Exception:
            logger.exception(
                "Failed to recompute session %s after answer key change on question %s",
                session_id, question_id,
            )
            failed.append(session_id)
    logger.info(
        "Recomputed %d sessions for question %s (%d failed)",
        len(recomputed), question_id, len(failed),
    )
    return recomputed, failed


@receiver(correct_answer_changed, dispatch_uid="exams.scoring.recompute")
def on_correct_answer_changed(sender, question_id, **kwargs):
    recompute_sessions_for_question(question_id)
