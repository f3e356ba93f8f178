from rest_framework.response import Response

from exams.errors import NotYetAvailable


def error_response(exc):
    response = Response(exc.as_dict(), status=exc.status_code)
    if isinstance(exc, NotYetAvailable) and exc.retry_after is not None:
        # pending exams are worth polling; ended ones are not
        response["Retry-After"] = str(exc.retry_after)
    return response
