from rest_framework import serializers

from .models import Result


class ResultSerializer(serializers.ModelSerializer):
    class Meta:
        model = Result
        fields = [
            "id", "student_id", "course_id", "mid_exam_score", "final_exam_score",
            "assignment_score", "overall_score", "grade", "visible_to_student",
            "made_visible_by", "made_visible_at",
        ]
        read_only_fields = fields


class StudentResultSerializer(serializers.ModelSerializer):
    class Meta:
        model = Result
        fields = [
            "id", "course_id", "mid_exam_score", "final_exam_score",
            "assignment_score", "overall_score", "grade",
        ]
        read_only_fields = fields


class ResultUpdateSerializer(serializers.Serializer):
    """Component scores a teacher may set; overall and grade are always derived."""

    mid_exam_score = serializers.FloatField(min_value=0.0, required=False, allow_null=True)
    final_exam_score = serializers.FloatField(min_value=0.0, required=False, allow_null=True)
    assignment_score = serializers.FloatField(min_value=0.0, required=False, allow_null=True)

    def validate(self, attrs):
        unknown = set(self.initial_data) - set(self.fields)
        if unknown:
            raise serializers.ValidationError(
                {field: "This field cannot be edited." for field in sorted(unknown)}
            )
        if not attrs:
            raise serializers.ValidationError("Provide at least one score to update.")
        return attrs


class VisibilitySerializer(serializers.Serializer):
    visible_to_student = serializers.BooleanField()
