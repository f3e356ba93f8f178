from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from exam_service.permission import Capability, HasCapability, Role
from exam_service.responses import error_response
from exams.errors import ExamServiceError

from . import services
from .serializers import (
    ResultSerializer,
    ResultUpdateSerializer,
    StudentResultSerializer,
    VisibilitySerializer,
)

RESULT_READERS = (
    Capability.VIEW_OWN_RESULTS,
    Capability.MANAGE_RESULTS,
    Capability.VIEW_ALL_RESULTS,
)


def serializer_for(user):
    return StudentResultSerializer if user.role == Role.STUDENT else ResultSerializer


class ResultListView(APIView):
    permission_classes = [HasCapability]
    capabilities = {"GET": RESULT_READERS}

    def get(self, request):
        try:
            results = services.results_for_user(request.user)
        except ExamServiceError as e:
            return error_response(e)
        course_id = request.query_params.get("course_id")
        if course_id:
            if not course_id.isdigit():
                return Response({"error": "course_id must be an integer"}, status=status.HTTP_400_BAD_REQUEST)
            results = results.filter(course_id=int(course_id))
        serializer = serializer_for(request.user)(results, many=True)
        return Response(serializer.data, status=status.HTTP_200_OK)


class ResultDetailView(APIView):
    permission_classes = [HasCapability]
    capabilities = {
        "GET": RESULT_READERS,
        "PATCH": (Capability.MANAGE_RESULTS,),
    }

    def get(self, request, result_id):
        try:
            result = services.result_for_user(result_id, request.user)
        except ExamServiceError as e:
            return error_response(e)
        return Response(serializer_for(request.user)(result).data, status=status.HTTP_200_OK)

    def patch(self, request, result_id):
        serializer = ResultUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = services.get_result(result_id)
            result = services.update_result(result, request.user.teacher_id, serializer.validated_data)
        except ExamServiceError as e:
            return error_response(e)
        return Response(ResultSerializer(result).data, status=status.HTTP_200_OK)


class ResultVisibilityView(APIView):
    permission_classes = [HasCapability]
    capabilities = {"PUT": (Capability.MANAGE_RESULTS,)}

    def put(self, request, result_id):
        serializer = VisibilitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = services.get_result(result_id)
            result = services.set_visibility(
                result,
                serializer.validated_data["visible_to_student"],
                request.user.teacher_id,
            )
        except ExamServiceError as e:
            return error_response(e)
        return Response(ResultSerializer(result).data, status=status.HTTP_200_OK)
