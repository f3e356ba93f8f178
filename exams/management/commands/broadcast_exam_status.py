import logging
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from messaging.broadcaster import ExamStatusBroadcaster

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Announce upcoming and active exams on the events exchange"

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run a single poll and exit")
        parser.add_argument("--interval", type=float, default=None)

    def handle(self, *args, **options):
        broadcaster = ExamStatusBroadcaster()
        interval = options["interval"] or settings.EXAM_STATUS_POLL_SECONDS
        while True:
            try:
                events = broadcaster.tick()
            except Exception:
                # the next poll starts from a fresh query
                logger.exception("Exam status poll failed")
                events = []
            if options["once"]:
                self.stdout.write(self.style.SUCCESS(f"Published {len(events)} event(s)"))
                return
            time.sleep(interval)
