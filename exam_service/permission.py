from django.db import models
from rest_framework.permissions import BasePermission


class Role(models.TextChoices):
    STUDENT = "student", "Student"
    TEACHER = "teacher", "Teacher"
    DEPARTMENT_HEAD = "department-head", "Department head"
    ADMIN = "admin", "Admin"


class Capability(models.TextChoices):
    TAKE_EXAMS = "take_exams"
    VIEW_OWN_RESULTS = "view_own_results"
    MANAGE_EXAMS = "manage_exams"
    MANAGE_RESULTS = "manage_results"
    VIEW_ALL_EXAMS = "view_all_exams"
    VIEW_ALL_RESULTS = "view_all_results"


ROLE_CAPABILITIES = {
    Role.STUDENT: frozenset({
        Capability.TAKE_EXAMS,
        Capability.VIEW_OWN_RESULTS,
    }),
    Role.TEACHER: frozenset({
        Capability.MANAGE_EXAMS,
        Capability.MANAGE_RESULTS,
    }),
    Role.DEPARTMENT_HEAD: frozenset({
        Capability.VIEW_ALL_EXAMS,
        Capability.VIEW_ALL_RESULTS,
    }),
    Role.ADMIN: frozenset({
        Capability.VIEW_ALL_EXAMS,
        Capability.VIEW_ALL_RESULTS,
    }),
}


def parse_role(value):
    """Map a role claim onto ``Role``; unknown or empty values give ``None``."""
    if isinstance(value, Role):
        return value
    if not value:
        return None
    try:
        return Role(str(value).strip().lower().replace("_", "-"))
    except ValueError:
        return None


def has_capability(user, capability):
    role = parse_role(getattr(user, "role", None))
    if role is None:
        return False
    return capability in ROLE_CAPABILITIES[role]


class HasCapability(BasePermission):
    """
    Checks ``view.capabilities``: a mapping of HTTP method to the
    capabilities any one of which grants access.
    """

    def has_permission(self, request, view):
        user = request.user
        if not user or not getattr(user, "is_authenticated", False):
            return False
        required = getattr(view, "capabilities", {}).get(request.method)
        if required is None:
            return False
        return any(has_capability(user, capability) for capability in required)


class IsStudent(BasePermission):
    def has_permission(self, request, view):
        return has_capability(request.user, Capability.TAKE_EXAMS)