"""Translate service exceptions into HTTP errors."""
import logging

from fastapi import HTTPException

from backend.utils.exceptions import (
    ConcurrencyConflictError,
    ExternalServiceError,
    InvariantViolationError,
    MatchNotFoundError,
    SettlementError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def to_http_exception(error: SettlementError) -> HTTPException:
    if isinstance(error, MatchNotFoundError):
        return HTTPException(status_code=404, detail=error.reason)
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.reason)
    if isinstance(error, ConcurrencyConflictError):
        return HTTPException(status_code=409, detail=error.reason)
    if isinstance(error, ExternalServiceError):
        return HTTPException(status_code=503, detail=error.reason)
    if isinstance(error, InvariantViolationError):
        return HTTPException(status_code=500, detail="Settlement halted for manual review")
    logger.error(f"Unmapped settlement error: {error}")
    return HTTPException(status_code=500, detail=error.reason)
