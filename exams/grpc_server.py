import logging
from concurrent import futures

import grpc
from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from results.services import visible_results_for_student

from . import ledger, scoring, sessions
from .availability import classify, filter_active
from .errors import (
    Conflict,
    ExamServiceError,
    Expired,
    Forbidden,
    InvalidInput,
    NotFound,
    NotYetAvailable,
)
from .models import Exam

# stubs are generated from the .proto at import time (grpcio-tools)
exam_pb2, exam_pb2_grpc = grpc.protos_and_services("exams/protos/exam.proto")

logger = logging.getLogger(__name__)

# first match wins; ExamEnded is an Expired, a pending exam is worth retrying
STATUS_CODES = (
    (NotYetAvailable, grpc.StatusCode.UNAVAILABLE),
    (Expired, grpc.StatusCode.FAILED_PRECONDITION),
    (NotFound, grpc.StatusCode.NOT_FOUND),
    (Forbidden, grpc.StatusCode.PERMISSION_DENIED),
    (InvalidInput, grpc.StatusCode.INVALID_ARGUMENT),
    (Conflict, grpc.StatusCode.ALREADY_EXISTS),
)


def status_code_for(exc):
    for error_class, code in STATUS_CODES:
        if isinstance(exc, error_class):
            return code
    return grpc.StatusCode.FAILED_PRECONDITION


def _required(request, *fields):
    # proto3 scalars default to 0 / "", so unset and zero ids look alike
    missing = [field for field in fields if not getattr(request, field)]
    if missing:
        raise InvalidInput(f"Missing required fields: {', '.join(missing)}")
    return [getattr(request, field) for field in fields]


def _present(**fields):
    return {name: value for name, value in fields.items() if value is not None}


def _isoformat(value):
    return value.isoformat() if value else ""


def exam_message(exam, now):
    return exam_pb2.ExamResponse(
        exam_id=exam.id,
        course_id=exam.course_id,
        class_id=exam.class_id,
        teacher_id=exam.teacher_id,
        title=exam.title,
        start_time=exam.start_time.isoformat(),
        duration=exam.duration,
        end_time=exam.end_time.isoformat(),
        state=classify(exam, now).value,
    )


def session_score_message(session):
    return exam_pb2.SessionScoreResponse(
        session_id=session.id,
        exam_id=session.exam_id,
        student_id=session.student_id,
        submitted_at=_isoformat(session.submitted_at),
        **_present(score=session.score, max_score=session.max_score),
    )


def result_message(result):
    return exam_pb2.ResultResponse(
        result_id=result.id,
        course_id=result.course_id,
        grade=result.grade or "",
        **_present(
            mid_exam_score=result.mid_exam_score,
            final_exam_score=result.final_exam_score,
            assignment_score=result.assignment_score,
            overall_score=result.overall_score,
        ),
    )


class ExamService(exam_pb2_grpc.ExamServiceServicer):
    """Exam core for other services."""

    def _call(self, handler, request, context, empty):
        try:
            return handler(request)
        except ExamServiceError as e:
            context.set_code(status_code_for(e))
            context.set_details(e.message)
            return empty
        except Exception as e:
            logger.exception("Unhandled error in %s", handler.__name__)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details(str(e))
            return empty

    def GetExam(self, request, context):
        def handler(request):
            (exam_id,) = _required(request, "exam_id")
            return exam_message(sessions.get_exam(exam_id), timezone.now())

        return self._call(handler, request, context, exam_pb2.ExamResponse())

    def ListActiveExams(self, request, context):
        def handler(request):
            now = timezone.now()
            exams = Exam.objects.running_at(now).order_by("start_time")
            if request.course_id:
                exams = exams.filter(course_id=request.course_id)
            exams = filter_active(exams, now)
            return exam_pb2.ListExamsResponse(exams=[exam_message(exam, now) for exam in exams])

        return self._call(handler, request, context, exam_pb2.ListExamsResponse())

    def SaveAnswer(self, request, context):
        def handler(request):
            student_id, exam_id, question_id, selected_option = _required(
                request, "student_id", "exam_id", "question_id", "selected_option"
            )
            session, answer, created = ledger.record_answer(
                student_id, exam_id, question_id, selected_option
            )
            return exam_pb2.SaveAnswerResponse(
                session_id=session.id,
                question_id=answer.question_id,
                answer_id=answer.id,
                selected_option=answer.selected_option,
                created=created,
            )

        return self._call(handler, request, context, exam_pb2.SaveAnswerResponse())

    def SubmitSession(self, request, context):
        def handler(request):
            session_id, student_id = _required(request, "session_id", "student_id")
            return session_score_message(sessions.submit_session(session_id, student_id))

        return self._call(handler, request, context, exam_pb2.SessionScoreResponse())

    def GetSessionScore(self, request, context):
        def handler(request):
            (session_id,) = _required(request, "session_id")
            if request.student_id:
                session = scoring.score_for_student(session_id, request.student_id)
            elif request.teacher_id:
                session = scoring.score_for_teacher(session_id, request.teacher_id)
            else:
                raise InvalidInput("Either student_id or teacher_id is required")
            return session_score_message(session)

        return self._call(handler, request, context, exam_pb2.SessionScoreResponse())

    def ListVisibleResults(self, request, context):
        def handler(request):
            (student_id,) = _required(request, "student_id")
            results = visible_results_for_student(student_id)
            return exam_pb2.ListResultsResponse(results=[result_message(r) for r in results])

        return self._call(handler, request, context, exam_pb2.ListResultsResponse())


class ConnectionManagedExamService(ExamService):
    """Server-side wrapper: server threads outlive requests, so stale database
    connections are dropped around each call."""

    def _call(self, handler, request, context, empty):
        close_old_connections()
        try:
            return super()._call(handler, request, context, empty)
        finally:
            close_old_connections()


def serve(port=None, max_workers=10):
    port = port or settings.EXAM_GRPC_PORT
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
    exam_pb2_grpc.add_ExamServiceServicer_to_server(ConnectionManagedExamService(), server)
    server.add_insecure_port(f"0.0.0.0:{port}")
    logger.info("gRPC server starting on 0.0.0.0:%s", port)
    server.start()
    server.wait_for_termination()
