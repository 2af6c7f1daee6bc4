"""Translation of service errors into HTTP errors."""

import logging

from fastapi import HTTPException

from acf_coach.services.errors import (
    ActionItemNotFoundError,
    AlreadyCompleteError,
    CoachingError,
    InitializationError,
    InvalidTransitionError,
    ModelUnavailableError,
    SessionNotFoundError,
    StoreUnavailableError,
    TurnInProgressError,
)

logger = logging.getLogger(__name__)


def http_error(error: Exception) -> HTTPException:
    """Map a coaching service error (or ValueError) to an HTTPException."""
    if isinstance(error, (SessionNotFoundError, ActionItemNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, (InvalidTransitionError, AlreadyCompleteError, TurnInProgressError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ModelUnavailableError):
        logger.warning(f"Model unavailable ({error.reason}): {error}")
        return HTTPException(
            status_code=503,
            detail={"message": str(error), "reason": error.reason, "retryable": True},
        )
    if isinstance(error, StoreUnavailableError):
        logger.error(f"Store unavailable: {error}")
        return HTTPException(
            status_code=503,
            detail={"message": str(error), "reason": "store", "retryable": True},
        )
    if isinstance(error, InitializationError):
        return HTTPException(
            status_code=503,
            detail={"message": str(error), "reason": "initialization", "retryable": True},
        )
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, CoachingError):
        return HTTPException(status_code=500, detail=str(error))
    raise error
