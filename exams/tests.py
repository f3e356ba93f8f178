from datetime import timedelta
from unittest.mock import MagicMock, patch

import grpc
from django.conf import settings
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import exceptions, status
from rest_framework.test import APIClient, APIRequestFactory
from rest_framework_simplejwt.backends import TokenBackend

from exam_service.auth import UserServiceJWTAuthentication, build_remote_user
from exam_service.permission import Role
from exam_service.user_client import UserGRPCClient, users_pb2
from results.models import Result

from .availability import ExamState, classify_window, ensure_active, filter_active
from .errors import (
    AlreadySubmitted,
    Conflict,
    ExamEnded,
    ExamNotActive,
    Expired,
    Forbidden,
    InvalidInput,
    InvalidOption,
    NotFound,
    NotYetAvailable,
    SessionClosed,
)
from .exam_admin import create_exam, update_exam
from .grpc_server import ExamService, exam_pb2, exam_pb2_grpc, status_code_for
from .ledger import record_answer, upsert_answer
from .models import Answer, Exam, ExamKind, ExamSession, Question
from .question_bank import update_question
from .scoring import compute_score, recompute_sessions_for_question, score_for_student, score_for_teacher
from .sessions import get_or_create_session, open_session, read_session_for_student, submit_session

TEACHER_ID = 1
OTHER_TEACHER_ID = 2
STUDENT_ID = 10
OTHER_STUDENT_ID = 11
COURSE_ID = 100


def make_exam(start_offset=timedelta(minutes=-5), duration=60, teacher_id=TEACHER_ID,
              course_id=COURSE_ID, title=ExamKind.MIDTERM, class_id=1):
    return Exam.objects.create(
        course_id=course_id,
        class_id=class_id,
        teacher_id=teacher_id,
        title=title,
        start_time=timezone.now() + start_offset,
        duration=duration,
    )


def make_question(exam, text="2 + 2 = ?", correct_option="A", weight=1.0):
    return Question.objects.create(
        exam=exam,
        text=text,
        option_a="4",
        option_b="5",
        option_c="22",
        option_d="0",
        correct_option=correct_option,
        weight=weight,
    )


class AvailabilityTestCase(SimpleTestCase):
    def setUp(self):
        self.start = timezone.now()

    def test_window_boundaries(self):
        self.assertEqual(classify_window(self.start, 60, self.start - timedelta(microseconds=1)), ExamState.PENDING)
        self.assertEqual(classify_window(self.start, 60, self.start), ExamState.ACTIVE)
        end = self.start + timedelta(minutes=60)
        self.assertEqual(classify_window(self.start, 60, end - timedelta(microseconds=1)), ExamState.ACTIVE)
        self.assertEqual(classify_window(self.start, 60, end), ExamState.ENDED)

    def test_ensure_active_reports_pending_with_retry_after(self):
        exam = Exam(start_time=self.start + timedelta(seconds=90), duration=30)
        with self.assertRaises(NotYetAvailable) as ctx:
            ensure_active(exam, self.start)
        self.assertEqual(ctx.exception.retry_after, 90)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_ensure_active_reports_ended(self):
        exam = Exam(start_time=self.start - timedelta(hours=2), duration=30)
        with self.assertRaises(ExamEnded) as ctx:
            ensure_active(exam, self.start)
        self.assertIsInstance(ctx.exception, ExamNotActive)
        self.assertIsInstance(ctx.exception, Expired)
        self.assertEqual(ctx.exception.status_code, 410)

    def test_filter_active(self):
        pending = Exam(start_time=self.start + timedelta(minutes=1), duration=30)
        active = Exam(start_time=self.start - timedelta(minutes=1), duration=30)
        ended = Exam(start_time=self.start - timedelta(minutes=31), duration=30)
        self.assertEqual(filter_active([pending, active, ended], self.start), [active])


class SessionStoreTestCase(TestCase):
    def setUp(self):
        self.exam = make_exam()

    def test_get_or_create_returns_existing(self):
        first, created = get_or_create_session(STUDENT_ID, self.exam)
        second, created_again = get_or_create_session(STUDENT_ID, self.exam)
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.id, second.id)

    def test_concurrent_create_reads_the_existing_row(self):
        first, _ = get_or_create_session(STUDENT_ID, self.exam)
        # the lookup misses, as it would for a writer that raced the first insert
        with patch("exams.sessions._find_session", return_value=None):
            second, created = get_or_create_session(STUDENT_ID, self.exam)
        self.assertFalse(created)
        self.assertEqual(second.id, first.id)
        self.assertEqual(ExamSession.objects.filter(student_id=STUDENT_ID, exam=self.exam).count(), 1)

    def test_submit_twice_keeps_first_timestamp(self):
        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        submitted = submit_session(session.id, STUDENT_ID)
        with self.assertRaises(AlreadySubmitted):
            submit_session(session.id, STUDENT_ID, now=timezone.now() + timedelta(minutes=5))
        session.refresh_from_db()
        self.assertEqual(session.submitted_at, submitted.submitted_at)

    def test_submit_by_other_student_is_forbidden(self):
        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        with self.assertRaises(Forbidden):
            submit_session(session.id, OTHER_STUDENT_ID)
        session.refresh_from_db()
        self.assertIsNone(session.submitted_at)

    def test_submit_after_exam_ended_is_allowed(self):
        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        submit_session(session.id, STUDENT_ID, now=self.exam.end_time + timedelta(minutes=1))
        session.refresh_from_db()
        self.assertTrue(session.is_submitted)

    def test_open_pending_exam(self):
        exam = make_exam(start_offset=timedelta(minutes=10), class_id=2)
        with self.assertRaises(NotYetAvailable):
            open_session(STUDENT_ID, exam)
        self.assertFalse(ExamSession.objects.filter(exam=exam).exists())

    def test_open_after_submit(self):
        session, _ = open_session(STUDENT_ID, self.exam)
        submit_session(session.id, STUDENT_ID)
        with self.assertRaises(AlreadySubmitted):
            open_session(STUDENT_ID, self.exam)

    def test_submitted_session_readable_after_exam_ends(self):
        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        after_end = self.exam.end_time + timedelta(minutes=1)
        with self.assertRaises(ExamEnded):
            read_session_for_student(session.id, STUDENT_ID, now=after_end)
        submit_session(session.id, STUDENT_ID)
        self.assertEqual(read_session_for_student(session.id, STUDENT_ID, now=after_end).id, session.id)


class AnswerLedgerTestCase(TestCase):
    def setUp(self):
        self.exam = make_exam()
        self.question = make_question(self.exam)

    def test_upsert_converges_to_latest_value(self):
        session, first, created = record_answer(STUDENT_ID, self.exam.id, self.question.id, "B")
        _, second, created_again = record_answer(STUDENT_ID, self.exam.id, self.question.id, "C")
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.id, second.id)
        self.assertEqual(Answer.objects.get(session=session, question=self.question).selected_option, "C")
        self.assertEqual(Answer.objects.count(), 1)

    def test_invalid_option_rejected_without_writes(self):
        for option in ("a", "E", ""):
            with self.assertRaises(InvalidInput):
                record_answer(STUDENT_ID, self.exam.id, self.question.id, option)
        with self.assertRaises(InvalidOption):
            record_answer(STUDENT_ID, self.exam.id, self.question.id, "e")
        self.assertEqual(ExamSession.objects.count(), 0)
        self.assertEqual(Answer.objects.count(), 0)

    def test_pending_exam_creates_no_session(self):
        exam = make_exam(start_offset=timedelta(minutes=5), class_id=2)
        question = make_question(exam)
        with self.assertRaises(NotYetAvailable):
            record_answer(STUDENT_ID, exam.id, question.id, "A")
        self.assertFalse(ExamSession.objects.filter(exam=exam).exists())

    def test_ended_exam_rejected(self):
        session, _, _ = record_answer(STUDENT_ID, self.exam.id, self.question.id, "A")
        with self.assertRaises(ExamEnded):
            record_answer(
                STUDENT_ID, self.exam.id, self.question.id, "B",
                now=self.exam.end_time,
            )
        self.assertEqual(Answer.objects.get(session=session).selected_option, "A")

    def test_submitted_session_is_closed(self):
        session, _, _ = record_answer(STUDENT_ID, self.exam.id, self.question.id, "A")
        submit_session(session.id, STUDENT_ID)
        with self.assertRaises(SessionClosed):
            record_answer(STUDENT_ID, self.exam.id, self.question.id, "B")
        self.assertEqual(Answer.objects.get(session=session).selected_option, "A")

    def test_question_of_another_exam(self):
        other = make_question(make_exam(class_id=2), text="Other")
        with self.assertRaises(NotFound):
            record_answer(STUDENT_ID, self.exam.id, other.id, "A")

    def test_missing_fields(self):
        with self.assertRaises(InvalidInput):
            record_answer(STUDENT_ID, self.exam.id, None, "A")

    def test_string_ids_stay_idempotent(self):
        key = (str(STUDENT_ID), str(self.exam.id), str(self.question.id))
        session, first, created = record_answer(*key, "B")
        again, second, created_again = record_answer(*key, "C")
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(session.id, again.id)
        self.assertEqual(first.id, second.id)
        self.assertEqual(again.student_id, STUDENT_ID)
        self.assertEqual(Answer.objects.get().selected_option, "C")

    def test_malformed_ids(self):
        for bad in ("abc", "1.5", -3, True, [1]):
            with self.assertRaises(InvalidInput):
                record_answer(STUDENT_ID, bad, self.question.id, "A")
            with self.assertRaises(InvalidInput):
                record_answer(bad, self.exam.id, self.question.id, "A")
        self.assertFalse(ExamSession.objects.exists())

    def test_upsert_into_someone_elses_session(self):
        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        with self.assertRaises(Forbidden):
            upsert_answer(session, self.question, "A", OTHER_STUDENT_ID)
        self.assertEqual(Answer.objects.count(), 0)


class ScoringTestCase(TestCase):
    def setUp(self):
        self.exam = make_exam()
        self.q1 = make_question(self.exam, text="q1", correct_option="A", weight=1)
        self.q2 = make_question(self.exam, text="q2", correct_option="B", weight=1)
        self.q3 = make_question(self.exam, text="q3", correct_option="C", weight=2)

    def test_max_score_counts_answered_questions_only(self):
        session, _, _ = record_answer(STUDENT_ID, self.exam.id, self.q3.id, "C")
        self.assertEqual(compute_score(session), (2.0, 2.0))

    def test_no_answers_scores_zero(self):
        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        self.assertEqual(compute_score(session), (0.0, 0.0))

    def test_zero_and_fractional_weights(self):
        self.q1.weight = 0
        self.q1.save()
        self.q2.weight = 0.5
        self.q2.save()
        record_answer(STUDENT_ID, self.exam.id, self.q1.id, "A")
        session, _, _ = record_answer(STUDENT_ID, self.exam.id, self.q2.id, "D")
        self.assertEqual(compute_score(session), (0.0, 0.5))

    def test_student_scores_only_after_submit(self):
        session, _, _ = record_answer(STUDENT_ID, self.exam.id, self.q1.id, "A")
        with self.assertRaises(Forbidden):
            score_for_student(session.id, STUDENT_ID)
        submit_session(session.id, STUDENT_ID)
        scored = score_for_student(session.id, STUDENT_ID)
        self.assertEqual((scored.score, scored.max_score), (1.0, 1.0))
        result = Result.objects.get(student_id=STUDENT_ID, course_id=COURSE_ID)
        self.assertEqual(result.mid_exam_score, 1.0)
        self.assertFalse(result.visible_to_student)

    def test_teacher_scores_any_time_without_folding(self):
        session, _, _ = record_answer(STUDENT_ID, self.exam.id, self.q1.id, "B")
        scored = score_for_teacher(session.id, TEACHER_ID)
        self.assertEqual((scored.score, scored.max_score), (0.0, 1.0))
        self.assertFalse(Result.objects.exists())
        with self.assertRaises(Forbidden):
            score_for_teacher(session.id, OTHER_TEACHER_ID)

    def test_answer_key_change_rescores_affected_sessions(self):
        first, _, _ = record_answer(STUDENT_ID, self.exam.id, self.q1.id, "A")
        record_answer(STUDENT_ID, self.exam.id, self.q2.id, "B")
        second, _, _ = record_answer(OTHER_STUDENT_ID, self.exam.id, self.q1.id, "B")
        untouched, _, _ = record_answer(12, self.exam.id, self.q3.id, "C")
        submit_session(first.id, STUDENT_ID)

        with self.captureOnCommitCallbacks(execute=True):
            update_question(self.q1, TEACHER_ID, {"correct_option": "B"})

        first.refresh_from_db()
        second.refresh_from_db()
        untouched.refresh_from_db()
        self.assertEqual((first.score, first.max_score), (1.0, 2.0))
        self.assertEqual((second.score, second.max_score), (1.0, 1.0))
        self.assertIsNone(untouched.score)
        result = Result.objects.get(student_id=STUDENT_ID, course_id=COURSE_ID)
        self.assertEqual(result.mid_exam_score, 1.0)
        self.assertFalse(Result.objects.filter(student_id=OTHER_STUDENT_ID).exists())

    def test_weight_change_rescores(self):
        session, _, _ = record_answer(STUDENT_ID, self.exam.id, self.q1.id, "A")
        with self.captureOnCommitCallbacks(execute=True):
            update_question(self.q1, TEACHER_ID, {"weight": 3})
        session.refresh_from_db()
        self.assertEqual((session.score, session.max_score), (3.0, 3.0))

    def test_text_edit_does_not_rescore(self):
        record_answer(STUDENT_ID, self.exam.id, self.q1.id, "A")
        with patch("exams.scoring.recompute_sessions_for_question") as mock_recompute:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                update_question(self.q1, TEACHER_ID, {"text": "1 + 3 = ?"})
        self.assertEqual(len(callbacks), 0)
        mock_recompute.assert_not_called()

    def test_recompute_failure_is_isolated(self):
        record_answer(STUDENT_ID, self.exam.id, self.q1.id, "A")
        record_answer(OTHER_STUDENT_ID, self.exam.id, self.q1.id, "A")
        with patch("exams.scoring.score_session", side_effect=[RuntimeError("boom"), (1.0, 1.0)]):
            recomputed, failed = recompute_sessions_for_question(self.q1.id)
        self.assertEqual(len(recomputed), 1)
        self.assertEqual(len(failed), 1)

    def test_edit_survives_failing_recompute(self):
        record_answer(STUDENT_ID, self.exam.id, self.q1.id, "A")
        with patch("exams.scoring.recompute_sessions_for_question", side_effect=RuntimeError("down")):
            with self.captureOnCommitCallbacks(execute=True):
                update_question(self.q1, TEACHER_ID, {"correct_option": "D"})
        self.q1.refresh_from_db()
        self.assertEqual(self.q1.correct_option, "D")

    def test_quiz_score_counts_in_overall_only(self):
        quiz = make_exam(title=ExamKind.QUIZ, class_id=2)
        question = make_question(quiz, weight=5)
        session, _, _ = record_answer(STUDENT_ID, quiz.id, question.id, "A")
        submit_session(session.id, STUDENT_ID)
        score_for_student(session.id, STUDENT_ID)
        result = Result.objects.get(student_id=STUDENT_ID, course_id=COURSE_ID)
        self.assertIsNone(result.mid_exam_score)
        self.assertIsNone(result.final_exam_score)
        self.assertEqual(result.overall_score, 5.0)


class ExamAdminTestCase(TestCase):
    def test_one_exam_of_each_kind_per_class(self):
        data = {
            "course_id": COURSE_ID,
            "class_id": 5,
            "title": ExamKind.MIDTERM,
            "start_time": timezone.now() + timedelta(days=1),
            "duration": 60,
        }
        create_exam(TEACHER_ID, data)
        with self.assertRaises(Conflict):
            create_exam(OTHER_TEACHER_ID, dict(data, start_time=timezone.now() + timedelta(days=2)))
        create_exam(TEACHER_ID, dict(data, title=ExamKind.FINAL))
        create_exam(TEACHER_ID, dict(data, class_id=6))
        self.assertEqual(Exam.objects.filter(class_id=5).count(), 2)

    def test_reschedule_rejected_once_started(self):
        exam = make_exam()
        get_or_create_session(STUDENT_ID, exam)
        with self.assertRaises(Conflict):
            update_exam(exam, TEACHER_ID, {"duration": 90})
        exam.refresh_from_db()
        self.assertEqual(exam.duration, 60)

    def test_reschedule_allowed_before_sessions(self):
        exam = make_exam(start_offset=timedelta(days=1))
        update_exam(exam, TEACHER_ID, {"duration": 90})
        exam.refresh_from_db()
        self.assertEqual(exam.duration, 90)


class ExamViewsTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.teacher = build_remote_user(1, Role.TEACHER, teacher_id=TEACHER_ID)
        self.other_teacher = build_remote_user(2, Role.TEACHER, teacher_id=OTHER_TEACHER_ID)
        self.student = build_remote_user(3, Role.STUDENT, student_id=STUDENT_ID)
        self.head = build_remote_user(4, Role.DEPARTMENT_HEAD)
        self.exam = make_exam()
        self.question = make_question(self.exam, correct_option="B", weight=2)

    def test_unauthenticated(self):
        response = self.client.get(reverse("exam-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_teacher_creates_exam(self):
        self.client.force_authenticate(user=self.teacher)
        data = {
            "course_id": COURSE_ID,
            "class_id": 3,
            "title": "final",
            "start_time": (timezone.now() + timedelta(days=1)).isoformat(),
            "duration": 90,
        }
        response = self.client.post(reverse("exam-list"), data, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["teacher_id"], TEACHER_ID)
        self.assertEqual(response.data["state"], "pending")

        response = self.client.post(reverse("exam-list"), data, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_create_exam_validation(self):
        self.client.force_authenticate(user=self.teacher)
        data = {
            "course_id": COURSE_ID,
            "class_id": 3,
            "title": "Test Exam",
            "start_time": timezone.now().isoformat(),
            "duration": 0,
        }
        response = self.client.post(reverse("exam-list"), data, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("title", response.data)
        self.assertIn("duration", response.data)

    def test_student_cannot_create_exam(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.post(reverse("exam-list"), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_student_lists_active_exams_only(self):
        make_exam(start_offset=timedelta(minutes=10), class_id=2)
        make_exam(start_offset=timedelta(hours=-3), class_id=3)
        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse("exam-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([exam["id"] for exam in response.data["exams"]], [self.exam.id])

    def test_role_scoped_listing(self):
        make_exam(teacher_id=OTHER_TEACHER_ID, class_id=2)
        self.client.force_authenticate(user=self.teacher)
        self.assertEqual(self.client.get(reverse("exam-list")).data["count"], 1)
        self.client.force_authenticate(user=self.head)
        self.assertEqual(self.client.get(reverse("exam-list")).data["count"], 2)

    def test_listing_filters(self):
        make_exam(course_id=COURSE_ID + 1, title=ExamKind.FINAL, class_id=2)
        self.client.force_authenticate(user=self.teacher)
        response = self.client.get(reverse("exam-list"), {"course_id": COURSE_ID + 1})
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["exams"][0]["title"], "final")
        response = self.client.get(reverse("exam-list"), {"title": "midterm"})
        self.assertEqual([exam["id"] for exam in response.data["exams"]], [self.exam.id])
        response = self.client.get(reverse("exam-list"), {"course_id": "abc"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.get(reverse("exam-list"), {"title": "essay"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse("exam-list"), {"title": "final"})
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["exams"][0]["course_id"], COURSE_ID + 1)

    def test_running_query_matches_window(self):
        make_exam(start_offset=timedelta(minutes=10), class_id=2)
        make_exam(start_offset=timedelta(minutes=-61), class_id=3)
        now = timezone.now()
        self.assertEqual(list(Exam.objects.running_at(now)), [self.exam])
        self.assertEqual(list(Exam.objects.running_at(now + timedelta(hours=2))), [])

    def test_student_exam_detail_hides_answer_key(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse("exam-detail", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn("correct_option", response.data["questions"][0])

        self.client.force_authenticate(user=self.teacher)
        response = self.client.get(reverse("exam-detail", args=[self.exam.id]))
        self.assertEqual(response.data["questions"][0]["correct_option"], "B")

    def test_student_exam_lookup_outcomes(self):
        pending = make_exam(start_offset=timedelta(minutes=2), class_id=2)
        ended = make_exam(start_offset=timedelta(hours=-3), class_id=3)
        self.client.force_authenticate(user=self.student)

        response = self.client.get(reverse("exam-detail", args=[pending.id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["code"], "not_yet_available")
        self.assertIn("Retry-After", response)

        response = self.client.get(reverse("exam-detail", args=[ended.id]))
        self.assertEqual(response.status_code, status.HTTP_410_GONE)
        self.assertEqual(response.data["code"], "exam_ended")

        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        submit_session(session.id, STUDENT_ID)
        response = self.client.get(reverse("exam-detail", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_410_GONE)
        self.assertEqual(response.data["code"], "already_submitted")

        response = self.client.get(reverse("exam-detail", args=[9999]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_teacher_cannot_read_other_teachers_exam(self):
        self.client.force_authenticate(user=self.other_teacher)
        response = self.client.get(reverse("exam-detail", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_reschedule_after_start_conflicts(self):
        get_or_create_session(STUDENT_ID, self.exam)
        self.client.force_authenticate(user=self.teacher)
        response = self.client.patch(
            reverse("exam-detail", args=[self.exam.id]), {"duration": 120}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_question_create_and_update(self):
        self.client.force_authenticate(user=self.teacher)
        data = {
            "text": "Capital of France?",
            "option_a": "Paris",
            "option_b": "Rome",
            "option_c": "Berlin",
            "option_d": "Madrid",
            "correct_option": "A",
            "weight": 1.5,
        }
        response = self.client.post(reverse("exam-questions", args=[self.exam.id]), data, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["weight"], 1.5)

        response = self.client.post(reverse("exam-questions", args=[self.exam.id]), data, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        data["correct_option"] = "a"
        data["text"] = "Another"
        response = self.client.post(reverse("exam-questions", args=[self.exam.id]), data, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        self.client.force_authenticate(user=self.other_teacher)
        response = self.client.get(reverse("exam-questions", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_question_patch_rescores(self):
        record_answer(STUDENT_ID, self.exam.id, self.question.id, "A")
        self.client.force_authenticate(user=self.teacher)
        with self.captureOnCommitCallbacks(execute=True):
            response = self.client.patch(
                reverse("question-detail", args=[self.question.id]),
                {"correct_option": "A"},
                format="json",
            )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        session = ExamSession.objects.get(student_id=STUDENT_ID, exam=self.exam)
        self.assertEqual((session.score, session.max_score), (2.0, 2.0))

    def test_exam_flow(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.post(reverse("exam-session-open", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        session_id = response.data["id"]
        response = self.client.post(reverse("exam-session-open", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["id"], session_id)

        payload = {"exam_id": self.exam.id, "question_id": self.question.id, "selected_option": "A"}
        response = self.client.post(reverse("answer-upsert"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["session_id"], session_id)
        payload["selected_option"] = "B"
        response = self.client.post(reverse("answer-upsert"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        payload["selected_option"] = "E"
        response = self.client.post(reverse("answer-upsert"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_option")

        response = self.client.get(reverse("session-detail", args=[session_id]))
        self.assertEqual(response.data["answers"][0]["selected_option"], "B")

        response = self.client.post(reverse("session-score", args=[session_id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.client.post(reverse("session-submit", args=[session_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        response = self.client.post(reverse("session-submit", args=[session_id]))
        self.assertEqual(response.status_code, status.HTTP_410_GONE)
        self.assertEqual(response.data["code"], "already_submitted")

        response = self.client.post(reverse("answer-upsert"), payload | {"selected_option": "C"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_410_GONE)
        self.assertEqual(response.data["code"], "session_closed")

        response = self.client.post(reverse("session-score", args=[session_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["session"]["score"], 2.0)
        self.assertEqual(response.data["session"]["max_score"], 2.0)

    def test_teacher_cannot_answer(self):
        self.client.force_authenticate(user=self.teacher)
        payload = {"exam_id": self.exam.id, "question_id": self.question.id, "selected_option": "A"}
        response = self.client.post(reverse("answer-upsert"), payload, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_student_cannot_read_other_session(self):
        session, _ = get_or_create_session(OTHER_STUDENT_ID, self.exam)
        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse("session-detail", args=[session.id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.get(reverse("session-score", args=[session.id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_teacher_reviews_sessions(self):
        record_answer(STUDENT_ID, self.exam.id, self.question.id, "B")
        session = ExamSession.objects.get(student_id=STUDENT_ID)
        self.client.force_authenticate(user=self.teacher)

        response = self.client.post(reverse("session-score", args=[session.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        response = self.client.get(reverse("exam-sessions", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]["score"], 2.0)
        response = self.client.get(reverse("session-detail", args=[session.id]))
        self.assertEqual(len(response.data["answers"]), 1)

        self.client.force_authenticate(user=self.other_teacher)
        response = self.client.get(reverse("exam-sessions", args=[self.exam.id]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class ExamGRPCServiceTestCase(TestCase):
    def setUp(self):
        self.service = ExamService()
        self.context = MagicMock()
        self.exam = make_exam()
        self.question = make_question(self.exam)

    def test_get_exam(self):
        response = self.service.GetExam(exam_pb2.GetExamRequest(exam_id=self.exam.id), self.context)
        self.assertEqual(response.exam_id, self.exam.id)
        self.assertEqual(response.title, "midterm")
        self.assertEqual(response.state, "active")
        self.context.set_code.assert_not_called()

    def test_get_exam_not_found(self):
        response = self.service.GetExam(exam_pb2.GetExamRequest(exam_id=9999), self.context)
        self.assertEqual(response, exam_pb2.ExamResponse())
        self.context.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)

    def test_list_active_exams(self):
        make_exam(start_offset=timedelta(minutes=5), class_id=2)
        make_exam(start_offset=timedelta(hours=-3), class_id=3)
        response = self.service.ListActiveExams(exam_pb2.ListActiveExamsRequest(), self.context)
        self.assertEqual([exam.exam_id for exam in response.exams], [self.exam.id])

        request = exam_pb2.ListActiveExamsRequest(course_id=COURSE_ID + 1)
        self.assertEqual(len(self.service.ListActiveExams(request, self.context).exams), 0)

    def test_save_answer_and_submit(self):
        request = exam_pb2.SaveAnswerRequest(
            student_id=STUDENT_ID, exam_id=self.exam.id, question_id=self.question.id, selected_option="A"
        )
        response = self.service.SaveAnswer(request, self.context)
        self.assertTrue(response.created)
        self.assertFalse(self.service.SaveAnswer(request, self.context).created)

        response = self.service.SubmitSession(
            exam_pb2.SubmitSessionRequest(session_id=response.session_id, student_id=STUDENT_ID), self.context
        )
        self.assertTrue(response.submitted_at)
        self.assertFalse(response.HasField("score"))

        response = self.service.GetSessionScore(
            exam_pb2.SessionScoreRequest(session_id=response.session_id, student_id=STUDENT_ID), self.context
        )
        self.assertEqual(response.score, 1.0)
        self.assertEqual(response.max_score, 1.0)
        self.context.set_code.assert_not_called()

    def test_save_answer_pending_exam(self):
        exam = make_exam(start_offset=timedelta(minutes=5), class_id=2)
        question = make_question(exam)
        request = exam_pb2.SaveAnswerRequest(
            student_id=STUDENT_ID, exam_id=exam.id, question_id=question.id, selected_option="A"
        )
        self.service.SaveAnswer(request, self.context)
        self.context.set_code.assert_called_once_with(grpc.StatusCode.UNAVAILABLE)

    def test_save_answer_missing_key(self):
        request = exam_pb2.SaveAnswerRequest(student_id=STUDENT_ID, question_id=self.question.id, selected_option="A")
        self.service.SaveAnswer(request, self.context)
        self.context.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        self.assertFalse(ExamSession.objects.exists())

    def test_save_answer_malformed_ids(self):
        request = exam_pb2.SaveAnswerRequest(
            student_id=-4, exam_id=self.exam.id, question_id=self.question.id, selected_option="A"
        )
        self.service.SaveAnswer(request, self.context)
        self.context.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        self.assertFalse(ExamSession.objects.exists())
        with self.assertRaises(TypeError):
            exam_pb2.SaveAnswerRequest(student_id="abc")

    def test_save_answer_invalid_option(self):
        request = exam_pb2.SaveAnswerRequest(
            student_id=STUDENT_ID, exam_id=self.exam.id, question_id=self.question.id, selected_option="a"
        )
        self.service.SaveAnswer(request, self.context)
        self.context.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_score_needs_a_caller(self):
        session, _ = get_or_create_session(STUDENT_ID, self.exam)
        self.service.GetSessionScore(exam_pb2.SessionScoreRequest(session_id=session.id), self.context)
        self.context.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_status_codes(self):
        self.assertEqual(status_code_for(ExamEnded()), grpc.StatusCode.FAILED_PRECONDITION)
        self.assertEqual(status_code_for(AlreadySubmitted()), grpc.StatusCode.FAILED_PRECONDITION)
        self.assertEqual(status_code_for(Forbidden()), grpc.StatusCode.PERMISSION_DENIED)
        self.assertEqual(status_code_for(InvalidOption()), grpc.StatusCode.INVALID_ARGUMENT)
        self.assertEqual(status_code_for(Conflict()), grpc.StatusCode.ALREADY_EXISTS)

    def test_list_visible_results(self):
        Result.objects.create(
            student_id=STUDENT_ID, course_id=COURSE_ID, visible_to_student=True, overall_score=72, grade="B"
        )
        Result.objects.create(student_id=STUDENT_ID, course_id=COURSE_ID + 1)
        response = self.service.ListVisibleResults(
            exam_pb2.ListVisibleResultsRequest(student_id=STUDENT_ID), self.context
        )
        self.assertEqual([r.course_id for r in response.results], [COURSE_ID])
        self.assertEqual(response.results[0].grade, "B")
        self.assertFalse(response.results[0].HasField("mid_exam_score"))

    def test_servicer_registered(self):
        server = MagicMock()
        exam_pb2_grpc.add_ExamServiceServicer_to_server(self.service, server)
        server.add_generic_rpc_handlers.assert_called_once()


class UserClientTestCase(SimpleTestCase):
    def test_get_identity_maps_empty_ids_to_none(self):
        client = UserGRPCClient(host="localhost", port=50099, timeout_seconds=2)
        client.stub = MagicMock()
        client.stub.GetIdentityByUserId.return_value = users_pb2.IdentityResponse(
            user_id=5, role="student", student_id=3
        )
        identity = client.get_identity("5")
        client.close()
        self.assertEqual(identity, {"user_id": 5, "role": "student", "student_id": 3, "teacher_id": None})
        request = client.stub.GetIdentityByUserId.call_args.args[0]
        self.assertEqual(request.user_id, 5)
        self.assertEqual(client.stub.GetIdentityByUserId.call_args.kwargs["timeout"], 2)


class AuthenticationTestCase(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.backend = TokenBackend(
            algorithm=settings.SIMPLE_JWT["ALGORITHM"],
            signing_key=settings.SIMPLE_JWT["SIGNING_KEY"],
        )
        self.auth = UserServiceJWTAuthentication()

    def _request(self, payload):
        token = self.backend.encode(payload)
        return self.factory.get("/api/exams", HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_role_from_token(self):
        user, _ = self.auth.authenticate(self._request({"user_id": 5, "role": "student", "student_id": 42}))
        self.assertEqual(user.role, Role.STUDENT)
        self.assertEqual(user.student_id, 42)

    @patch("exam_service.auth.UserGRPCClient")
    def test_role_looked_up_when_missing(self, mock_client_class):
        mock_client_class.return_value.get_identity.return_value = {"role": "teacher", "teacher_id": 8}
        user, _ = self.auth.authenticate(self._request({"user_id": 5}))
        self.assertEqual(user.role, Role.TEACHER)
        self.assertEqual(user.teacher_id, 8)
        mock_client_class.return_value.close.assert_called_once()

    @patch("exam_service.auth.UserGRPCClient")
    def test_user_service_unavailable(self, mock_client_class):
        mock_client_class.return_value.get_identity.side_effect = grpc.RpcError()
        with self.assertRaises(exceptions.AuthenticationFailed):
            self.auth.authenticate(self._request({"user_id": 5}))

    def test_invalid_token(self):
        request = self.factory.get("/api/exams", HTTP_AUTHORIZATION="Bearer not-a-token")
        with self.assertRaises(exceptions.AuthenticationFailed):
            self.auth.authenticate(request)

    @patch("exam_service.auth.UserGRPCClient")
    def test_unknown_role(self, mock_client_class):
        mock_client_class.return_value.get_identity.return_value = {"role": "janitor"}
        with self.assertRaises(exceptions.AuthenticationFailed):
            self.auth.authenticate(self._request({"user_id": 5, "role": "janitor"}))

    def test_no_header(self):
        self.assertIsNone(self.auth.authenticate(self.factory.get("/api/exams")))
