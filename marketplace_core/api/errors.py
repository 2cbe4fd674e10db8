"""Maps application errors onto HTTP responses."""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from marketplace_core.application.exceptions import (
    AlreadyFinalizedError,
    DuplicateRatingError,
    ListingNotFoundError,
    ListingUnavailableError,
    MarketplaceError,
    NotAuthorizedError,
    NotificationNotFoundError,
    OfferInvalidError,
    OfferNotCompletedError,
    SaleOutcomeUnknownError,
    StorageUnavailableError,
)
from marketplace_core.domain.entities.offer import InvalidOfferError
from marketplace_core.domain.entities.rating import InvalidRatingError
from marketplace_core.domain.state_machine.transition_rules import InvalidStateTransitionError

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR: dict[type[MarketplaceError], int] = {
    NotAuthorizedError: status.HTTP_403_FORBIDDEN,
    ListingNotFoundError: status.HTTP_404_NOT_FOUND,
    NotificationNotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyFinalizedError: status.HTTP_409_CONFLICT,
    OfferInvalidError: status.HTTP_409_CONFLICT,
    ListingUnavailableError: status.HTTP_409_CONFLICT,
    OfferNotCompletedError: status.HTTP_409_CONFLICT,
    DuplicateRatingError: status.HTTP_409_CONFLICT,
    StorageUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    SaleOutcomeUnknownError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error_code(exc: Exception) -> str:
    return type(exc).__name__.removesuffix("Error")


async def _marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if exc.retryable:
        logger.warning("request_failed_retryable", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={"error": _error_code(exc), "detail": str(exc), "retryable": exc.retryable},
    )


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": _error_code(exc), "detail": str(exc), "retryable": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, _marketplace_error_handler)  # type: ignore[arg-type]
    for error in (InvalidOfferError, InvalidRatingError, InvalidStateTransitionError):
        app.add_exception_handler(error, _validation_error_handler)  # type: ignore[arg-type]
