from datetime import timedelta

from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from exam_service.auth import build_remote_user
from exam_service.permission import Role
from exams.errors import Forbidden, InvalidInput
from exams.models import Exam, ExamKind, ExamSession

from .grading import Grade, grade_for
from .models import Result
from .services import fold_score, set_visibility, update_result

TEACHER_ID = 1
OTHER_TEACHER_ID = 2
STUDENT_ID = 10
COURSE_ID = 100


def make_exam(course_id=COURSE_ID, teacher_id=TEACHER_ID, title=ExamKind.MIDTERM, class_id=1):
    return Exam.objects.create(
        course_id=course_id,
        class_id=class_id,
        teacher_id=teacher_id,
        title=title,
        start_time=timezone.now() - timedelta(hours=2),
        duration=60,
    )


class GradingTestCase(SimpleTestCase):
    def test_boundaries(self):
        self.assertEqual(grade_for(90), Grade.A_PLUS)
        self.assertEqual(grade_for(89.9), Grade.A)
        self.assertEqual(grade_for(85), Grade.A)
        self.assertEqual(grade_for(80), Grade.A_MINUS)
        self.assertEqual(grade_for(75), Grade.B_PLUS)
        self.assertEqual(grade_for(70), Grade.B)
        self.assertEqual(grade_for(65), Grade.B_MINUS)
        self.assertEqual(grade_for(60), Grade.C_PLUS)
        self.assertEqual(grade_for(59.99), Grade.C)
        self.assertEqual(grade_for(45), Grade.C_MINUS)
        self.assertEqual(grade_for(40), Grade.D)
        self.assertEqual(grade_for(39.9), Grade.F)
        self.assertEqual(grade_for(0), Grade.F)
        self.assertEqual(grade_for(120), Grade.A_PLUS)

    def test_no_score_no_grade(self):
        self.assertIsNone(grade_for(None))


class ResultAggregatorTestCase(TestCase):
    def setUp(self):
        self.exam = make_exam()

    def test_fold_creates_then_updates(self):
        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.MIDTERM, 30)
        self.assertEqual(result.mid_exam_score, 30)
        self.assertEqual(result.overall_score, 30)
        self.assertEqual(result.grade, Grade.F)
        self.assertFalse(result.visible_to_student)

        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.FINAL, 50)
        self.assertEqual(result.overall_score, 80)
        self.assertEqual(result.grade, Grade.A_MINUS)

        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.MIDTERM, 35)
        self.assertEqual(result.overall_score, 85)
        self.assertEqual(result.grade, Grade.A)
        self.assertEqual(Result.objects.count(), 1)

    def test_fold_keeps_visibility(self):
        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.MIDTERM, 30)
        set_visibility(result, True, TEACHER_ID)
        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.FINAL, 40)
        self.assertTrue(result.visible_to_student)
        self.assertEqual(result.made_visible_by, TEACHER_ID)

    def test_unslotted_kind_counts_in_overall(self):
        quiz = make_exam(title=ExamKind.QUIZ, class_id=2)
        ExamSession.objects.create(
            exam=quiz, student_id=STUDENT_ID, started_at=quiz.start_time,
            submitted_at=quiz.start_time + timedelta(minutes=10), score=7, max_score=10,
        )
        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.QUIZ, 7)
        self.assertIsNone(result.mid_exam_score)
        self.assertEqual(result.overall_score, 7)

        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.MIDTERM, 40)
        self.assertEqual(result.overall_score, 47)
        self.assertEqual(result.grade, Grade.C_MINUS)

    def test_visibility_stamps(self):
        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.MIDTERM, 30)
        revealed_at = timezone.now()
        set_visibility(result, True, TEACHER_ID, now=revealed_at)
        result.refresh_from_db()
        self.assertTrue(result.visible_to_student)
        self.assertEqual(result.made_visible_by, TEACHER_ID)
        self.assertEqual(result.made_visible_at, revealed_at)

        set_visibility(result, False, TEACHER_ID)
        result.refresh_from_db()
        self.assertFalse(result.visible_to_student)
        self.assertEqual(result.made_visible_at, revealed_at)

    def test_visibility_needs_course_teacher(self):
        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.MIDTERM, 30)
        with self.assertRaises(Forbidden):
            set_visibility(result, True, OTHER_TEACHER_ID)
        result.refresh_from_db()
        self.assertFalse(result.visible_to_student)

    def test_update_result_recomputes(self):
        result = fold_score(STUDENT_ID, COURSE_ID, ExamKind.MIDTERM, 30)
        result = update_result(result, TEACHER_ID, {"assignment_score": 15.5})
        self.assertEqual(result.overall_score, 45.5)
        self.assertEqual(result.grade, Grade.C_MINUS)

        with self.assertRaises(InvalidInput):
            update_result(result, TEACHER_ID, {"overall_score": 99})
        with self.assertRaises(InvalidInput):
            update_result(result, TEACHER_ID, {"assignment_score": -1})


class ResultViewsTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.teacher = build_remote_user(1, Role.TEACHER, teacher_id=TEACHER_ID)
        self.other_teacher = build_remote_user(2, Role.TEACHER, teacher_id=OTHER_TEACHER_ID)
        self.student = build_remote_user(3, Role.STUDENT, student_id=STUDENT_ID)
        self.admin = build_remote_user(4, Role.ADMIN)
        make_exam()
        make_exam(course_id=COURSE_ID + 1, teacher_id=OTHER_TEACHER_ID, class_id=2)
        self.hidden = Result.objects.create(student_id=STUDENT_ID, course_id=COURSE_ID, mid_exam_score=30)
        self.shown = Result.objects.create(
            student_id=STUDENT_ID, course_id=COURSE_ID + 1, final_exam_score=50, visible_to_student=True
        )
        Result.objects.create(student_id=STUDENT_ID + 1, course_id=COURSE_ID, visible_to_student=True)

    def test_student_sees_only_visible_own_results(self):
        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse("result-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r["id"] for r in response.data], [self.shown.id])
        self.assertNotIn("visible_to_student", response.data[0])

        response = self.client.get(reverse("result-detail", args=[self.hidden.id]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        response = self.client.get(reverse("result-detail", args=[self.shown.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_listing_by_role(self):
        self.client.force_authenticate(user=self.teacher)
        self.assertEqual(len(self.client.get(reverse("result-list")).data), 2)
        self.client.force_authenticate(user=self.admin)
        self.assertEqual(len(self.client.get(reverse("result-list")).data), 3)
        response = self.client.get(reverse("result-list"), {"course_id": COURSE_ID + 1})
        self.assertEqual(len(response.data), 1)

    def test_teacher_reveals_result(self):
        self.client.force_authenticate(user=self.teacher)
        url = reverse("result-visibility", args=[self.hidden.id])
        response = self.client.put(url, {"visible_to_student": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["made_visible_by"], TEACHER_ID)

        self.client.force_authenticate(user=self.student)
        response = self.client.get(reverse("result-list"))
        self.assertEqual(len(response.data), 2)

    def test_other_teacher_cannot_reveal(self):
        self.client.force_authenticate(user=self.other_teacher)
        url = reverse("result-visibility", args=[self.hidden.id])
        response = self.client.put(url, {"visible_to_student": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_student_cannot_reveal(self):
        self.client.force_authenticate(user=self.student)
        url = reverse("result-visibility", args=[self.hidden.id])
        response = self.client.put(url, {"visible_to_student": True}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_teacher_edits_components(self):
        self.client.force_authenticate(user=self.teacher)
        url = reverse("result-detail", args=[self.hidden.id])
        response = self.client.patch(url, {"assignment_score": 20}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["overall_score"], 50)
        self.assertEqual(response.data["grade"], "C")

        response = self.client.patch(url, {"overall_score": 100}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
