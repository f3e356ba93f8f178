from django.apps import AppConfig


class ExamsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "exams"

    def ready(self):
        # connects the correct-answer-changed receiver
        from . import scoring  # noqa: F401
