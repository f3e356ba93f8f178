import logging
from types import SimpleNamespace

import grpc
from django.conf import settings
from rest_framework import authentication, exceptions
from rest_framework_simplejwt.backends import TokenBackend
from rest_framework_simplejwt.exceptions import TokenBackendError

from exam_service.permission import Role, parse_role
from exam_service.user_client import UserGRPCClient

logger = logging.getLogger(__name__)


class RemoteUser(SimpleNamespace):
    def __init__(self, id, role=None, username=None, student=None, teacher=None):
        super().__init__()
        self.id = id
        self.role = parse_role(role)
        self.username = username or f"user_{id}"
        self.is_authenticated = True
        self.student = student
        self.teacher = teacher

    @property
    def student_id(self):
        return getattr(self.student, "id", None)

    @property
    def teacher_id(self):
        return getattr(self.teacher, "id", None)


def build_remote_user(user_id, role, student_id=None, teacher_id=None):
    role = parse_role(role)
    student = SimpleNamespace(id=int(student_id)) if student_id else None
    teacher = SimpleNamespace(id=int(teacher_id)) if teacher_id else None
    if role == Role.STUDENT and student is None:
        # student records are keyed by the account id when no separate id is issued
        student = SimpleNamespace(id=int(user_id))
    if role == Role.TEACHER and teacher is None:
        teacher = SimpleNamespace(id=int(user_id))
    return RemoteUser(id=int(user_id), role=role, student=student, teacher=teacher)


class UserServiceJWTAuthentication(authentication.BaseAuthentication):
    def authenticate(self, request):
        header = authentication.get_authorization_header(request).split()
        if not header or header[0].lower() != b"bearer":
            return None
        if len(header) == 1:
            raise exceptions.AuthenticationFailed("Invalid token header. No credentials provided.")

        token = header[1].decode()
        payload = self.decode_token(token)

        user_id = payload.get("user_id") or payload.get("userId") or payload.get("sub")
        if not user_id:
            raise exceptions.AuthenticationFailed("user_id missing from token")

        role = payload.get("role") or payload.get("userType")
        student_id = payload.get("student_id") or payload.get("studentId")
        teacher_id = payload.get("teacher_id") or payload.get("teacherId")

        if parse_role(role) is None:
            identity = self.lookup_identity(user_id)
            role = identity.get("role")
            student_id = identity.get("student_id") or student_id
            teacher_id = identity.get("teacher_id") or teacher_id

        remote_user = build_remote_user(user_id, role, student_id=student_id, teacher_id=teacher_id)
        if remote_user.role is None:
            raise exceptions.AuthenticationFailed("Unknown role for user")
        logger.debug("Authenticated user_id=%s as %s", remote_user.id, remote_user.role)
        return (remote_user, token)

    def decode_token(self, token):
        simple_jwt_settings = getattr(settings, "SIMPLE_JWT", {})
        backend = TokenBackend(
            algorithm=simple_jwt_settings.get("ALGORITHM", "HS256"),
            signing_key=simple_jwt_settings.get("SIGNING_KEY", settings.SECRET_KEY),
        )
        try:
            return backend.decode(token, verify=True)
        except TokenBackendError as e:
            logger.warning("JWT decoding failed: %s", e)
            raise exceptions.AuthenticationFailed("Invalid token")

    def lookup_identity(self, user_id):
        client = UserGRPCClient(timeout_seconds=settings.USER_SERVICE_TIMEOUT_SECONDS)
        try:
            return client.get_identity(user_id) or {}
        except grpc.RpcError as e:
            logger.error("Identity lookup failed for user_id=%s: %s", user_id, e)
            raise exceptions.AuthenticationFailed("User service unavailable")
        finally:
            client.close()
