from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from exam_service.permission import Capability, HasCapability, IsStudent, Role
from exam_service.responses import error_response

from . import exam_admin, ledger, question_bank, scoring, sessions
from .errors import ExamServiceError, Forbidden
from .models import ExamKind
from .serializers import (
    AnswerSerializer,
    AnswerWriteSerializer,
    ExamDetailSerializer,
    ExamSerializer,
    ExamSessionSerializer,
    QuestionSerializer,
    SessionScoreSerializer,
    StudentExamDetailSerializer,
)

EXAM_READERS = (Capability.TAKE_EXAMS, Capability.MANAGE_EXAMS, Capability.VIEW_ALL_EXAMS)
SESSION_READERS = (Capability.TAKE_EXAMS, Capability.MANAGE_EXAMS)


class ExamListView(APIView):
    permission_classes = [HasCapability]
    capabilities = {
        "GET": EXAM_READERS,
        "POST": (Capability.MANAGE_EXAMS,),
    }

    def get(self, request):
        course_id = request.query_params.get("course_id")
        if course_id and not course_id.isdigit():
            return Response({"error": "course_id must be an integer"}, status=status.HTTP_400_BAD_REQUEST)
        title = request.query_params.get("title")
        if title and title not in ExamKind.values:
            return Response(
                {"error": f"title must be one of: {', '.join(ExamKind.values)}"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            exams = exam_admin.exams_for_user(
                request.user,
                course_id=int(course_id) if course_id else None,
                title=title or None,
            )
        except ExamServiceError as e:
            return error_response(e)
        serializer = ExamSerializer(exams, many=True)
        return Response({"exams": serializer.data, "count": len(exams)}, status=status.HTTP_200_OK)

    def post(self, request):
        serializer = ExamSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            exam = exam_admin.create_exam(request.user.teacher_id, serializer.validated_data)
        except ExamServiceError as e:
            return error_response(e)
        return Response(ExamSerializer(exam).data, status=status.HTTP_201_CREATED)


class ExamDetailView(APIView):
    permission_classes = [HasCapability]
    capabilities = {
        "GET": EXAM_READERS,
        "PATCH": (Capability.MANAGE_EXAMS,),
    }

    def get(self, request, exam_id):
        try:
            exam = exam_admin.exam_for_user(exam_id, request.user)
        except ExamServiceError as e:
            return error_response(e)
        if request.user.role == Role.STUDENT:
            data = StudentExamDetailSerializer(exam).data
        else:
            data = ExamDetailSerializer(exam).data
        return Response(data, status=status.HTTP_200_OK)

    def patch(self, request, exam_id):
        serializer = ExamSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        try:
            exam = sessions.get_exam(exam_id)
            exam = exam_admin.update_exam(exam, request.user.teacher_id, serializer.validated_data)
        except ExamServiceError as e:
            return error_response(e)
        return Response(ExamSerializer(exam).data, status=status.HTTP_200_OK)


class ExamQuestionsView(APIView):
    permission_classes = [HasCapability]
    capabilities = {
        "GET": (Capability.MANAGE_EXAMS, Capability.VIEW_ALL_EXAMS),
        "POST": (Capability.MANAGE_EXAMS,),
    }

    def get(self, request, exam_id):
        try:
            exam = sessions.get_exam(exam_id)
            if request.user.role == Role.TEACHER:
                exam_admin.ensure_exam_teacher(exam, request.user.teacher_id)
        except ExamServiceError as e:
            return error_response(e)
        serializer = QuestionSerializer(exam.questions.all(), many=True)
        return Response(serializer.data, status=status.HTTP_200_OK)

    def post(self, request, exam_id):
        serializer = QuestionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            exam = sessions.get_exam(exam_id)
            question = question_bank.create_question(
                exam, request.user.teacher_id, serializer.validated_data
            )
        except ExamServiceError as e:
            return error_response(e)
        return Response(QuestionSerializer(question).data, status=status.HTTP_201_CREATED)


class QuestionDetailView(APIView):
    permission_classes = [HasCapability]
    capabilities = {
        "GET": (Capability.MANAGE_EXAMS,),
        "PATCH": (Capability.MANAGE_EXAMS,),
        "PUT": (Capability.MANAGE_EXAMS,),
    }

    def get(self, request, question_id):
        try:
            question = question_bank.get_question(question_id)
            exam_admin.ensure_exam_teacher(question.exam, request.user.teacher_id)
        except ExamServiceError as e:
            return error_response(e)
        return Response(QuestionSerializer(question).data, status=status.HTTP_200_OK)

    def patch(self, request, question_id):
        return self._update(request, question_id, partial=True)

    def put(self, request, question_id):
        return self._update(request, question_id, partial=False)

    def _update(self, request, question_id, partial):
        serializer = QuestionSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        try:
            question = question_bank.get_question(question_id)
            question = question_bank.update_question(
                question, request.user.teacher_id, serializer.validated_data
            )
        except ExamServiceError as e:
            return error_response(e)
        return Response(QuestionSerializer(question).data, status=status.HTTP_200_OK)


class OpenSessionView(APIView):
    permission_classes = [IsStudent]

    def post(self, request, exam_id):
        try:
            exam = sessions.get_exam(exam_id)
            session, created = sessions.open_session(request.user.student_id, exam)
        except ExamServiceError as e:
            return error_response(e)
        return Response(
            ExamSessionSerializer(session).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class ExamSessionsView(APIView):
    permission_classes = [HasCapability]
    capabilities = {"GET": (Capability.MANAGE_EXAMS,)}

    def get(self, request, exam_id):
        try:
            exam = sessions.get_exam(exam_id)
            exam_admin.ensure_exam_teacher(exam, request.user.teacher_id)
        except ExamServiceError as e:
            return error_response(e)
        serializer = SessionScoreSerializer(exam.sessions.order_by("student_id"), many=True)
        return Response(serializer.data, status=status.HTTP_200_OK)


class AnswerView(APIView):
    permission_classes = [IsStudent]

    def post(self, request):
        serializer = AnswerWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            session, answer, created = ledger.record_answer(
                student_id=request.user.student_id,
                exam_id=data["exam_id"],
                question_id=data["question_id"],
                selected_option=data["selected_option"],
            )
        except ExamServiceError as e:
            return error_response(e)
        body = AnswerSerializer(answer).data
        body["session_id"] = session.id
        return Response(body, status=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


class SessionDetailView(APIView):
    permission_classes = [HasCapability]
    capabilities = {"GET": SESSION_READERS}

    def get(self, request, session_id):
        try:
            if request.user.role == Role.STUDENT:
                session = sessions.read_session_for_student(session_id, request.user.student_id)
            else:
                session = sessions.get_session(session_id)
                exam_admin.ensure_exam_teacher(session.exam, request.user.teacher_id)
        except ExamServiceError as e:
            return error_response(e)
        return Response(ExamSessionSerializer(session).data, status=status.HTTP_200_OK)


class SubmitSessionView(APIView):
    permission_classes = [IsStudent]

    def post(self, request, session_id):
        try:
            session = sessions.submit_session(session_id, request.user.student_id)
        except ExamServiceError as e:
            return error_response(e)
        return Response(
            {"message": "Exam submitted successfully", "session": SessionScoreSerializer(session).data},
            status=status.HTTP_200_OK,
        )


class SessionScoreView(APIView):
    permission_classes = [HasCapability]
    capabilities = {"GET": SESSION_READERS, "POST": SESSION_READERS}

    def get(self, request, session_id):
        try:
            session = sessions.get_session(session_id)
            if request.user.role == Role.STUDENT:
                sessions.ensure_owner(session, request.user.student_id)
                if not session.is_submitted:
                    raise Forbidden("Your score is available after you submit the exam")
            else:
                exam_admin.ensure_exam_teacher(session.exam, request.user.teacher_id)
        except ExamServiceError as e:
            return error_response(e)
        return Response(SessionScoreSerializer(session).data, status=status.HTTP_200_OK)

    def post(self, request, session_id):
        try:
            if request.user.role == Role.STUDENT:
                session = scoring.score_for_student(session_id, request.user.student_id)
            else:
                session = scoring.score_for_teacher(session_id, request.user.teacher_id)
        except ExamServiceError as e:
            return error_response(e)
        return Response(
            {"message": "Score calculated successfully", "session": SessionScoreSerializer(session).data},
            status=status.HTTP_200_OK,
        )
