"""Translate domain errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from referral_market.core.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[MarketplaceError], int], ...] = (
    (InsufficientBalanceError, status.HTTP_402_PAYMENT_REQUIRED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
)


def http_status_for(exc: MarketplaceError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def to_http_exception(exc: MarketplaceError) -> HTTPException:
    detail = {
        key: str(value) if not isinstance(value, (int, float, bool, str, type(None))) else value
        for key, value in exc.to_dict().items()
    }
    return HTTPException(status_code=http_status_for(exc), detail=detail)
