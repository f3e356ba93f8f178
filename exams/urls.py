from django.urls import path

from .views import (
    AnswerView,
    ExamDetailView,
    ExamListView,
    ExamQuestionsView,
    ExamSessionsView,
    OpenSessionView,
    QuestionDetailView,
    SessionDetailView,
    SessionScoreView,
    SubmitSessionView,
)

urlpatterns = [
    path("exams", ExamListView.as_view(), name="exam-list"),
    path("exams/<int:exam_id>", ExamDetailView.as_view(), name="exam-detail"),
    path("exams/<int:exam_id>/questions", ExamQuestionsView.as_view(), name="exam-questions"),
    path("exams/<int:exam_id>/session", OpenSessionView.as_view(), name="exam-session-open"),
    path("exams/<int:exam_id>/sessions", ExamSessionsView.as_view(), name="exam-sessions"),
    path("questions/<int:question_id>", QuestionDetailView.as_view(), name="question-detail"),
    path("answers", AnswerView.as_view(), name="answer-upsert"),
    path("sessions/<int:session_id>", SessionDetailView.as_view(), name="session-detail"),
    path("sessions/<int:session_id>/submit", SubmitSessionView.as_view(), name="session-submit"),
    path("sessions/<int:session_id>/score", SessionScoreView.as_view(), name="session-score"),
]
