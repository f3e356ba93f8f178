"""
Real-time answer channel. Consumes ``save-answer`` messages and writes them
through the same ledger as the HTTP endpoint, replying with
``answer-saved`` or ``answer-save-error``.
"""
import json
import logging

import pika
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import close_old_connections

from exams.errors import ExamServiceError
from exams.ledger import record_answer

logger = logging.getLogger(__name__)

SAVE_ANSWER = "save-answer"
ANSWER_SAVED = "answer-saved"
ANSWER_SAVE_ERROR = "answer-save-error"


def error_reply(data, message, code="error"):
    return {
        "event": ANSWER_SAVE_ERROR,
        "student_id": data.get("student_id"),
        "exam_id": data.get("exam_id"),
        "question_id": data.get("question_id"),
        "error": message,
        "code": code,
    }


def handle_message(data):
    """Apply one message and return the reply event."""
    event = data.get("event", SAVE_ANSWER)
    if event != SAVE_ANSWER:
        return error_reply(data, f"Unsupported event: {event}", code="unsupported_event")
    try:
        session, answer, created = record_answer(
            student_id=data.get("student_id"),
            exam_id=data.get("exam_id"),
            question_id=data.get("question_id"),
            selected_option=data.get("selected_option"),
        )
    except ExamServiceError as e:
        logger.info("Rejected answer from student %s: %s", data.get("student_id"), e.message)
        return error_reply(data, e.message, code=e.code)
    return {
        "event": ANSWER_SAVED,
        "student_id": session.student_id,
        "exam_id": session.exam_id,
        "session_id": session.id,
        "question_id": answer.question_id,
        "answer_id": answer.id,
        "selected_option": answer.selected_option,
        "created": created,
    }


def send_reply(channel, properties, reply):
    body = json.dumps(reply, cls=DjangoJSONEncoder)
    if properties is not None and properties.reply_to:
        channel.basic_publish(
            exchange="",
            routing_key=properties.reply_to,
            properties=pika.BasicProperties(correlation_id=properties.correlation_id),
            body=body,
        )
    else:
        channel.basic_publish(exchange=settings.EXAM_EVENTS_EXCHANGE, routing_key="", body=body)


def callback(ch, method, properties, body):
    close_old_connections()
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Dropping malformed answer message: %s", e)
        ch.basic_ack(delivery_tag=method.delivery_tag)
        return
    if not isinstance(data, dict):
        logger.warning("Dropping answer message that is not an object")
        ch.basic_ack(delivery_tag=method.delivery_tag)
        return

    try:
        reply = handle_message(data)
    except Exception:
        logger.exception("Failed to save answer for student %s", data.get("student_id"))
        send_reply(ch, properties, error_reply(data, "Failed to save answer"))
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return

    send_reply(ch, properties, reply)
    ch.basic_ack(delivery_tag=method.delivery_tag)


def start_consumer():
    connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.RABBITMQ_HOST))
    channel = connection.channel()
    channel.exchange_declare(exchange=settings.EXAM_EVENTS_EXCHANGE, exchange_type="fanout")
    # durable: pending answers survive a broker restart
    channel.queue_declare(queue=settings.ANSWER_QUEUE, durable=True)
    channel.basic_qos(prefetch_count=1)
    channel.basic_consume(queue=settings.ANSWER_QUEUE, on_message_callback=callback)

    logger.info("Waiting for answers on %s", settings.ANSWER_QUEUE)
    try:
        channel.start_consuming()
    finally:
        connection.close()
