"""
Availability window of an exam: ``[start_time, start_time + duration)``.
"""
import enum
import math
from datetime import timedelta

from .errors import ExamEnded, NotYetAvailable


class ExamState(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"


def classify_window(start_time, duration_minutes, now):
    if now < start_time:
        return ExamState.PENDING
    if now < start_time + timedelta(minutes=duration_minutes):
        return ExamState.ACTIVE
    return ExamState.ENDED


def classify(exam, now):
    return classify_window(exam.start_time, exam.duration, now)


def seconds_until_start(exam, now):
    return max(0, math.ceil((exam.start_time - now).total_seconds()))


def ensure_active(exam, now):
    """Raise ``NotYetAvailable`` or ``ExamEnded`` unless ``exam`` is active at ``now``."""
    state = classify(exam, now)
    if state is ExamState.PENDING:
        raise NotYetAvailable(retry_after=seconds_until_start(exam, now))
    if state is ExamState.ENDED:
        raise ExamEnded()
    return state


def filter_active(exams, now):
    return [exam for exam in exams if classify(exam, now) is ExamState.ACTIVE]
