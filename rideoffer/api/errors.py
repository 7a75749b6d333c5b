"""Translate protocol errors into HTTP responses."""

from fastapi import HTTPException

from rideoffer.domain.errors import (
    ExternalServiceError,
    IdentityNotFound,
    InvalidStateTransition,
    OfferUnavailable,
    RideNotFound,
    RideOfferError,
    ValidationFailed,
)

_STATUS_CODES = (
    (RideNotFound, 404),
    (IdentityNotFound, 404),
    (OfferUnavailable, 409),
    (InvalidStateTransition, 409),
    (ValidationFailed, 422),
    (ExternalServiceError, 502),
)


def http_error(exc: RideOfferError) -> HTTPException:
    for error_cls, status_code in _STATUS_CODES:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
