import json
import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pika
from django.core.management import call_command
from django.db import connection
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature
from django.utils import timezone
from pika.exceptions import AMQPConnectionError

from exams import sessions
from exams.ledger import record_answer
from exams.models import Answer, Exam, ExamKind, ExamSession, Question

from .broadcaster import EXAM_ACTIVE, EXAM_STATE_CHANGED, EXAM_UPCOMING, ExamStatusBroadcaster
from .consumer import ANSWER_SAVE_ERROR, ANSWER_SAVED, callback, handle_message
from .publisher import publish_event

STUDENT_ID = 10


def make_exam(start_time, duration=60, class_id=1):
    return Exam.objects.create(
        course_id=100,
        class_id=class_id,
        teacher_id=1,
        title=ExamKind.MIDTERM,
        start_time=start_time,
        duration=duration,
    )


class AnswerConsumerTestCase(TestCase):
    def setUp(self):
        self.exam = make_exam(timezone.now() - timedelta(minutes=5))
        self.question = Question.objects.create(
            exam=self.exam, text="q", option_a="a", option_b="b", option_c="c",
            option_d="d", correct_option="A",
        )
        self.message = {
            "event": "save-answer",
            "student_id": STUDENT_ID,
            "exam_id": self.exam.id,
            "question_id": self.question.id,
            "selected_option": "B",
        }

    def test_handle_message_saves_answer(self):
        reply = handle_message(self.message)
        self.assertEqual(reply["event"], ANSWER_SAVED)
        self.assertTrue(reply["created"])
        reply = handle_message(dict(self.message, selected_option="C"))
        self.assertFalse(reply["created"])
        self.assertEqual(Answer.objects.get().selected_option, "C")

    def test_handle_message_rejects_invalid_option(self):
        reply = handle_message(dict(self.message, selected_option="X"))
        self.assertEqual(reply["event"], ANSWER_SAVE_ERROR)
        self.assertEqual(reply["code"], "invalid_option")
        self.assertFalse(Answer.objects.exists())

    def test_handle_message_missing_fields(self):
        reply = handle_message({"event": "save-answer", "student_id": STUDENT_ID})
        self.assertEqual(reply["event"], ANSWER_SAVE_ERROR)
        self.assertEqual(reply["code"], "invalid_input")

    def test_handle_message_ended_exam(self):
        exam = make_exam(timezone.now() - timedelta(hours=3), class_id=2)
        question = Question.objects.create(
            exam=exam, text="q", option_a="a", option_b="b", option_c="c",
            option_d="d", correct_option="A",
        )
        reply = handle_message(dict(self.message, exam_id=exam.id, question_id=question.id))
        self.assertEqual(reply["code"], "exam_ended")

    def test_handle_message_string_ids(self):
        message = {key: str(value) for key, value in self.message.items()}
        reply = handle_message(message)
        self.assertEqual(reply["event"], ANSWER_SAVED)
        self.assertTrue(reply["created"])
        reply = handle_message(dict(message, selected_option="C"))
        self.assertEqual(reply["event"], ANSWER_SAVED)
        self.assertFalse(reply["created"])
        self.assertEqual(reply["student_id"], STUDENT_ID)
        self.assertEqual(ExamSession.objects.get().student_id, STUDENT_ID)
        self.assertEqual(Answer.objects.get().selected_option, "C")

    def test_handle_message_malformed_id(self):
        reply = handle_message(dict(self.message, exam_id="abc"))
        self.assertEqual(reply["event"], ANSWER_SAVE_ERROR)
        self.assertEqual(reply["code"], "invalid_input")
        self.assertFalse(ExamSession.objects.exists())

    @patch("messaging.consumer.close_old_connections")
    def test_callback_acks_malformed_id(self, _):
        channel = MagicMock()
        body = json.dumps(dict(self.message, question_id="q-1")).encode()
        callback(channel, MagicMock(delivery_tag=5), pika.BasicProperties(), body)
        channel.basic_ack.assert_called_once_with(delivery_tag=5)
        channel.basic_nack.assert_not_called()
        reply = json.loads(channel.basic_publish.call_args.kwargs["body"])
        self.assertEqual(reply["code"], "invalid_input")

    @patch("messaging.consumer.close_old_connections")
    def test_callback_acks_and_replies(self, _):
        channel = MagicMock()
        method = MagicMock(delivery_tag=7)
        callback(channel, method, pika.BasicProperties(), json.dumps(self.message).encode())
        channel.basic_ack.assert_called_once_with(delivery_tag=7)
        reply = json.loads(channel.basic_publish.call_args.kwargs["body"])
        self.assertEqual(reply["event"], ANSWER_SAVED)

    @patch("messaging.consumer.close_old_connections")
    def test_callback_replies_to_reply_queue(self, _):
        channel = MagicMock()
        properties = pika.BasicProperties(reply_to="student-10", correlation_id="abc")
        callback(channel, MagicMock(delivery_tag=1), properties, json.dumps(self.message).encode())
        kwargs = channel.basic_publish.call_args.kwargs
        self.assertEqual(kwargs["routing_key"], "student-10")
        self.assertEqual(kwargs["properties"].correlation_id, "abc")

    @patch("messaging.consumer.close_old_connections")
    def test_callback_drops_malformed_message(self, _):
        channel = MagicMock()
        callback(channel, MagicMock(delivery_tag=3), pika.BasicProperties(), b"{not json")
        channel.basic_ack.assert_called_once_with(delivery_tag=3)
        channel.basic_publish.assert_not_called()

    @patch("messaging.consumer.close_old_connections")
    @patch("messaging.consumer.record_answer", side_effect=RuntimeError("database gone"))
    def test_callback_nacks_unexpected_failure(self, _, __):
        channel = MagicMock()
        callback(channel, MagicMock(delivery_tag=4), pika.BasicProperties(), json.dumps(self.message).encode())
        channel.basic_nack.assert_called_once_with(delivery_tag=4, requeue=False)
        reply = json.loads(channel.basic_publish.call_args.kwargs["body"])
        self.assertEqual(reply["event"], ANSWER_SAVE_ERROR)


class PublisherTestCase(TestCase):
    @patch("messaging.publisher._connect", side_effect=AMQPConnectionError("refused"))
    def test_broker_failure_is_reported_not_raised(self, _):
        self.assertFalse(publish_event({"event": "exam-active"}))

    @patch("messaging.publisher._connect")
    def test_publish_to_fanout_exchange(self, mock_connect):
        self.assertTrue(publish_event({"event": "exam-active", "exam_id": 1}, exchange="exams"))
        channel = mock_connect.return_value.channel.return_value
        channel.exchange_declare.assert_called_once_with(exchange="exams", exchange_type="fanout")
        self.assertEqual(json.loads(channel.basic_publish.call_args.kwargs["body"])["exam_id"], 1)
        mock_connect.return_value.close.assert_called_once()


class ExamStatusBroadcasterTestCase(TestCase):
    def setUp(self):
        self.now = timezone.now()
        self.publish = MagicMock()
        self.broadcaster = ExamStatusBroadcaster(publish=self.publish, upcoming_window_seconds=60)

    def test_announces_upcoming_then_active_then_ended(self):
        exam = make_exam(self.now + timedelta(seconds=30), duration=1)
        make_exam(self.now + timedelta(minutes=10), class_id=2)

        events = self.broadcaster.tick(self.now)
        self.assertEqual([(e["event"], e["exam_id"]) for e in events], [(EXAM_UPCOMING, exam.id)])
        self.publish.assert_called_once_with(events)

        events = self.broadcaster.tick(self.now + timedelta(seconds=40))
        self.assertEqual(
            [e["event"] for e in events], [EXAM_ACTIVE, EXAM_STATE_CHANGED]
        )
        self.assertEqual(events[1]["previous_state"], "pending")
        self.assertEqual(events[1]["state"], "active")

        events = self.broadcaster.tick(self.now + timedelta(seconds=120))
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]["event"], EXAM_STATE_CHANGED)
        self.assertEqual(events[0]["state"], "ended")
        self.assertEqual(self.broadcaster.states, {})

    def test_quiet_tick_publishes_nothing(self):
        make_exam(self.now + timedelta(hours=1))
        self.assertEqual(self.broadcaster.tick(self.now), [])
        self.publish.assert_not_called()

    @patch("messaging.broadcaster.publish_events")
    def test_command_single_poll(self, mock_publish):
        make_exam(timezone.now() - timedelta(minutes=1))
        call_command("broadcast_exam_status", "--once")
        mock_publish.assert_called_once()
        self.assertEqual(mock_publish.call_args.args[0][0]["event"], EXAM_ACTIVE)


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentFirstAnswerTestCase(TransactionTestCase):
    """HTTP and real-time first writes for the same student and exam."""

    def setUp(self):
        self.exam = make_exam(timezone.now() - timedelta(minutes=5))
        self.question = Question.objects.create(
            exam=self.exam, text="q", option_a="a", option_b="b", option_c="c",
            option_d="d", correct_option="A",
        )

    def test_both_paths_share_one_session(self):
        barrier = threading.Barrier(2, timeout=10)
        find_session = sessions._find_session

        def find_after_both_arrive(student_id, exam):
            # both writers look before either inserts
            barrier.wait()
            return find_session(student_id, exam)

        errors = []
        replies = []

        def direct():
            try:
                record_answer(STUDENT_ID, self.exam.id, self.question.id, "B")
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        def realtime():
            try:
                replies.append(handle_message({
                    "event": "save-answer",
                    "student_id": STUDENT_ID,
                    "exam_id": self.exam.id,
                    "question_id": self.question.id,
                    "selected_option": "C",
                }))
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        with patch("exams.sessions._find_session", side_effect=find_after_both_arrive):
            threads = [threading.Thread(target=direct), threading.Thread(target=realtime)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(replies[0]["event"], ANSWER_SAVED)
        self.assertEqual(ExamSession.objects.filter(student_id=STUDENT_ID, exam=self.exam).count(), 1)
        answer = Answer.objects.get()
        self.assertEqual(answer.session.student_id, STUDENT_ID)
        self.assertIn(answer.selected_option, ("B", "C"))
