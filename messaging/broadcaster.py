"""
Polls exam schedules and announces exams that are about to start or are
running, plus every move between availability states.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from exams.availability import ExamState, classify, filter_active
from exams.models import Exam

from .publisher import publish_events

logger = logging.getLogger(__name__)

EXAM_UPCOMING = "exam-upcoming"
EXAM_ACTIVE = "exam-active"
EXAM_STATE_CHANGED = "exam-state-changed"


def exam_event(event, exam):
    return {
        "event": event,
        "exam_id": exam.id,
        "title": exam.title,
        "course_id": exam.course_id,
        "class_id": exam.class_id,
        "start_time": exam.start_time,
        "duration": exam.duration,
        "end_time": exam.end_time,
    }


class ExamStatusBroadcaster:
    def __init__(self, publish=None, upcoming_window_seconds=None):
        self.publish = publish or publish_events
        if upcoming_window_seconds is None:
            upcoming_window_seconds = settings.EXAM_UPCOMING_WINDOW_SECONDS
        self.upcoming_window = timedelta(seconds=upcoming_window_seconds)
        self.states = {}  # exam id -> last announced state

    def tick(self, now=None):
        now = now or timezone.now()
        events = []
        current = {}

        upcoming = Exam.objects.filter(
            start_time__gt=now, start_time__lte=now + self.upcoming_window
        ).order_by("start_time")
        for exam in upcoming:
            current[exam.id] = ExamState.PENDING
            events.append(exam_event(EXAM_UPCOMING, exam))

        running = Exam.objects.running_at(now).order_by("start_time")
        for exam in filter_active(running, now):
            current[exam.id] = ExamState.ACTIVE
            events.append(exam_event(EXAM_ACTIVE, exam))

        # exams we announced before but that left both buckets
        gone = set(self.states) - set(current)
        for exam in Exam.objects.filter(id__in=gone):
            current[exam.id] = classify(exam, now)

        for exam_id, state in current.items():
            previous = self.states.get(exam_id)
            if previous is not None and previous != state:
                events.append({
                    "event": EXAM_STATE_CHANGED,
                    "exam_id": exam_id,
                    "previous_state": previous.value,
                    "state": state.value,
                })

        self.states = {
            exam_id: state for exam_id, state in current.items() if state != ExamState.ENDED
        }
        if events:
            self.publish(events)
        return events
