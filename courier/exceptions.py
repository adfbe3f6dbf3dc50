"""
Operational errors raised by the chat services, and the DRF exception
handler that turns them into HTTP responses.

Services raise these directly; views never catch them. Anything that is
not a ``ChatError`` or a DRF ``APIException`` is an internal fault: it is
logged with its traceback and the client gets a generic 500.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ChatError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    default_detail = "Request could not be processed"

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_detail = "Invalid input"


class NotFound(ChatError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_detail = "Not found"


class Forbidden(ChatError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_detail = "You do not have access to this resource"


class InvalidOperation(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_operation"
    default_detail = "Operation not allowed"


def error_body(code, message):
    return {"success": False, "error": {"code": code, "message": message}}


def chat_exception_handler(exc, context):
    if isinstance(exc, ChatError):
        return Response(error_body(exc.code, exc.detail), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        detail = response.data.get("detail") if isinstance(response.data, dict) else None
        code = getattr(exc, "default_code", "error")
        if detail is not None:
            response.data = error_body(code, str(detail))
        else:
            response.data = {**error_body(code, "Invalid input"), "fields": response.data}
        return response

    view = context.get("view")
    logger.exception(
        "Unhandled error in %s", view.__class__.__name__ if view else "request", exc_info=exc
    )
    return Response(
        error_body("internal_error", "Something went wrong"),
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
