"""
Failures of the exam core. They carry an HTTP status and a stable ``code``
so each transport can report them without inspecting messages.
"""


class ExamServiceError(Exception):
    status_code = 400
    code = "error"
    default_message = "Request could not be processed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self):
        return {"error": self.message, "code": self.code}


class NotFound(ExamServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Forbidden(ExamServiceError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied"


class InvalidInput(ExamServiceError):
    status_code = 400
    code = "invalid_input"
    default_message = "Invalid input"


class InvalidOption(InvalidInput):
    code = "invalid_option"
    default_message = "Selected option must be one of A, B, C or D"


class Conflict(ExamServiceError):
    status_code = 409
    code = "conflict"
    default_message = "Conflicting state"


class ExamNotActive(ExamServiceError):
    """Raised for any write or read attempted outside the availability window."""

    status_code = 403
    code = "exam_not_active"
    default_message = "This exam is not active"


class NotYetAvailable(ExamNotActive):
    code = "not_yet_available"
    default_message = "This exam is not available yet. Please check back at the scheduled time."

    def __init__(self, message=None, retry_after=None):
        super().__init__(message)
        self.retry_after = retry_after

    def as_dict(self):
        body = super().as_dict()
        if self.retry_after is not None:
            body["retry_after"] = self.retry_after
        return body


class Expired(ExamServiceError):
    status_code = 410
    code = "expired"
    default_message = "This exam is no longer available"


class ExamEnded(ExamNotActive, Expired):
    status_code = 410
    code = "exam_ended"
    default_message = "This exam is no longer available. The exam time has ended."


class AlreadySubmitted(Expired):
    code = "already_submitted"
    default_message = "You have already submitted this exam"


class SessionClosed(Expired):
    code = "session_closed"
    default_message = "This exam session has been submitted and no longer accepts answers"
