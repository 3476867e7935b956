from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError

from core.exceptions import (
    BadRequest,
    InvalidState,
    NotFound,
    RateLimited,
    Unprocessable,
    api_exception_handler,
)


def _handle(exc):
    return api_exception_handler(exc, {"view": None})


def test_service_errors_carry_status_and_code():
    cases = [
        (BadRequest("nope"), 400, "bad_request"),
        (NotFound(), 404, "not_found"),
        (InvalidState("wrong state"), 409, "invalid_state"),
        (Unprocessable(), 422, "unprocessable"),
        (RateLimited(), 429, "rate_limited"),
    ]
    for exc, status_code, code in cases:
        response = _handle(exc)
        assert response.status_code == status_code
        assert response.data["code"] == code


def test_integrity_error_becomes_conflict():
    response = _handle(IntegrityError("UNIQUE constraint failed"))

    assert response.status_code == 409
    assert response.data["code"] == "conflict"


def test_django_validation_error_becomes_bad_request():
    response = _handle(DjangoValidationError({"end_date": ["End must be after start."]}))

    assert response.status_code == 400
    assert response.data == {"end_date": ["End must be after start."]}


def test_unknown_errors_fall_through():
    assert _handle(ZeroDivisionError()) is None
