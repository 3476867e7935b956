"""Error taxonomy shared by the booking services and the API layer."""

from __future__ import annotations

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ServiceError(APIException):
    """Base class for business-rule violations raised by service functions."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."
    default_code = "error"


class BadRequest(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Malformed request."
    default_code = "bad_request"


class Forbidden(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You are not allowed to perform this action."
    default_code = "forbidden"


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class Conflict(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "The request conflicts with the current state."
    default_code = "conflict"


class InvalidState(Conflict):
    default_detail = "This action is not allowed in the booking's current state."
    default_code = "invalid_state"


class Unprocessable(ServiceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "The request could not be processed."
    default_code = "unprocessable"


class RateLimited(ServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many attempts, please try again later."
    default_code = "rate_limited"


def api_exception_handler(exc, context):
    """
    Render service errors through DRF, adding a machine-readable `code`.

    Django model validation errors become 400s and integrity errors become 409s
    so constraint races surface as conflicts instead of server errors.
    """
    if isinstance(exc, DjangoValidationError):
        detail = exc.message_dict if hasattr(exc, "error_dict") else exc.messages
        exc = ValidationError(detail=detail)
    elif isinstance(exc, IntegrityError):
        logger.info("api: integrity error mapped to conflict", exc_info=True)
        exc = Conflict()

    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception(
            "api: unhandled error in %s",
            view.__class__.__name__ if view is not None else "unknown view",
        )
        return None

    if (
        isinstance(exc, APIException)
        and not isinstance(exc, ValidationError)
        and isinstance(response.data, dict)
    ):
        codes = exc.get_codes()
        response.data.setdefault("code", codes if isinstance(codes, str) else exc.default_code)
    return response
