import grpc
from django.conf import settings

# stubs are generated from the .proto at import time (grpcio-tools)
users_pb2, users_pb2_grpc = grpc.protos_and_services("exam_service/protos/users.proto")


class UserGRPCClient:
    """Looks up a caller's role and student/teacher ids in user_service."""

    def __init__(self, host=None, port=None, timeout_seconds=None):
        host = host or settings.USER_SERVICE_HOST
        port = port or settings.USER_SERVICE_PORT
        self.channel = grpc.insecure_channel(f"{host}:{port}")
        self.stub = users_pb2_grpc.UserServiceStub(self.channel)
        self.timeout = timeout_seconds

    def close(self):
        self.channel.close()

    def get_identity(self, user_id):
        """
        Returns a dict like
        ``{"user_id": 7, "role": "student", "student_id": 3, "teacher_id": None}``.
        Raises ``grpc.RpcError`` when user_service cannot answer.
        """
        request = users_pb2.IdentityRequest(user_id=int(user_id))
        response = self.stub.GetIdentityByUserId(request, timeout=self.timeout)
        return {
            "user_id": response.user_id,
            "role": response.role,
            "student_id": response.student_id or None,
            "teacher_id": response.teacher_id or None,
        }
