import logging
from functools import partial

from django.db import IntegrityError, transaction

from .errors import Conflict, NotFound
from .exam_admin import ensure_exam_teacher
from .models import Question
from .signals import correct_answer_changed
from .validators import validate_option, validate_weight

logger = logging.getLogger(__name__)

# edits to these fields invalidate already computed scores
ANSWER_KEY_FIELDS = ("correct_option", "weight")


def get_question(question_id):
    try:
        return Question.objects.select_related("exam").get(id=question_id)
    except Question.DoesNotExist:
        raise NotFound("Question not found")


def _clean(data):
    data = dict(data)
    if "correct_option" in data:
        validate_option(data["correct_option"])
    if "weight" in data:
        data["weight"] = validate_weight(data["weight"])
    return data


def create_question(exam, teacher_id, data):
    ensure_exam_teacher(exam, teacher_id)
    data = _clean(data)
    try:
        with transaction.atomic():
            question = Question.objects.create(exam=exam, **data)
    except IntegrityError:
        raise Conflict("A question with this text already exists for this exam")
    return question


def update_question(question, teacher_id, changes):
    """
    Apply ``changes``. When the answer key moves, the correct-answer-changed
    event is sent after commit, so a failed recompute never undoes the edit.
    """
    ensure_exam_teacher(question.exam, teacher_id)
    changes = _clean(changes)
    changed_key_fields = [
        field for field in ANSWER_KEY_FIELDS
        if field in changes and changes[field] != getattr(question, field)
    ]
    for field, value in changes.items():
        setattr(question, field, value)
    try:
        with transaction.atomic():
            question.save()
            if changed_key_fields:
                transaction.on_commit(
                    partial(announce_answer_key_change, question.id, changed_key_fields)
                )
    except IntegrityError:
        raise Conflict("A question with this text already exists for this exam")
    return question


def announce_answer_key_change(question_id, changed_fields):
    logger.info("Answer key changed on question %s: %s", question_id, ", ".join(changed_fields))
    responses = correct_answer_changed.send_robust(
        sender=Question, question_id=question_id, changed_fields=changed_fields
    )
    for receiver, response in responses:
        if isinstance(response, Exception):
            logger.error("Receiver %r failed for question %s: %s", receiver, question_id, response)
