from rest_framework import serializers

from .errors import InvalidInput, InvalidOption
from .models import ExamKind, Option


def validate_option(value):
    if value not in Option.values:
        raise InvalidOption()
    return value


def validate_weight(value):
    try:
        weight = float(value)
    except (TypeError, ValueError):
        raise InvalidInput("Weight must be a number")
    if weight < 0:
        raise InvalidInput("Weight must be 0 or greater")
    return weight


def validate_duration(value):
    if value is None or value < 1:
        raise serializers.ValidationError("Duration must be at least 1 minute")


def validate_exam_kind(value):
    if value not in ExamKind.values:
        raise serializers.ValidationError(
            f"Title must be one of: {', '.join(ExamKind.values)}"
        )


def validate_id(value, name):
    """Record ids may arrive as strings on the message paths; store them as ints."""
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be an integer id")
    try:
        identifier = int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be an integer id")
    if identifier < 1 or (isinstance(value, float) and value != identifier):
        raise InvalidInput(f"{name} must be an integer id")
    return identifier
