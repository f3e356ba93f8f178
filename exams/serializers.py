from django.utils import timezone
from rest_framework import serializers

from .availability import classify
from .models import Answer, Exam, ExamSession, Question
from .validators import validate_duration, validate_exam_kind


class ExamSerializer(serializers.ModelSerializer):
    title = serializers.CharField(max_length=20, validators=[validate_exam_kind])
    duration = serializers.IntegerField(validators=[validate_duration])
    end_time = serializers.DateTimeField(read_only=True)
    state = serializers.SerializerMethodField()

    class Meta:
        model = Exam
        fields = [
            "id", "course_id", "class_id", "teacher_id", "title",
            "start_time", "duration", "end_time", "state", "created_at",
        ]
        read_only_fields = ["id", "teacher_id", "created_at"]
        # uniqueness is reported by the service as a conflict
        validators = []

    def get_state(self, exam):
        return classify(exam, self.context.get("now") or timezone.now()).value


class QuestionSerializer(serializers.ModelSerializer):
    weight = serializers.FloatField(min_value=0.0, required=False)

    class Meta:
        model = Question
        fields = [
            "id", "exam", "text", "option_a", "option_b", "option_c",
            "option_d", "correct_option", "weight",
        ]
        read_only_fields = ["id", "exam"]
        validators = []


class StudentQuestionSerializer(serializers.ModelSerializer):
    """Question as shown during an exam: no answer key."""

    class Meta:
        model = Question
        fields = ["id", "text", "option_a", "option_b", "option_c", "option_d", "weight"]
        read_only_fields = fields


class ExamDetailSerializer(ExamSerializer):
    questions = QuestionSerializer(many=True, read_only=True)

    class Meta(ExamSerializer.Meta):
        fields = ExamSerializer.Meta.fields + ["questions"]


class StudentExamDetailSerializer(ExamSerializer):
    questions = StudentQuestionSerializer(many=True, read_only=True)

    class Meta(ExamSerializer.Meta):
        fields = ExamSerializer.Meta.fields + ["questions"]


class AnswerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Answer
        fields = ["id", "question", "selected_option"]
        read_only_fields = fields


class AnswerWriteSerializer(serializers.Serializer):
    exam_id = serializers.IntegerField()
    question_id = serializers.IntegerField()
    # option validity is checked by the ledger so both ingress paths report it alike
    selected_option = serializers.CharField(max_length=8)


class ExamSessionSerializer(serializers.ModelSerializer):
    exam_id = serializers.IntegerField(read_only=True)
    answers = AnswerSerializer(many=True, read_only=True)

    class Meta:
        model = ExamSession
        fields = [
            "id", "exam_id", "student_id", "started_at", "submitted_at",
            "score", "max_score", "answers",
        ]
        read_only_fields = fields


class SessionScoreSerializer(serializers.ModelSerializer):
    exam_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = ExamSession
        fields = ["id", "exam_id", "student_id", "submitted_at", "score", "max_score"]
        read_only_fields = fields
