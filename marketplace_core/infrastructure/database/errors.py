from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_core.application.exceptions import StorageUnavailableError

logger = structlog.get_logger(__name__)

# Errors meaning "the database did not answer", as opposed to a rejected statement
_UNAVAILABLE = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError, OSError)


@asynccontextmanager
async def storage_errors(session: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Roll back and re-raise connectivity failures as StorageUnavailableError."""
    try:
        yield
    except _UNAVAILABLE as exc:
        logger.warning("storage_unavailable", operation=operation, error=str(exc))
        try:
            await session.rollback()
        except _UNAVAILABLE:
            logger.debug("rollback_failed", operation=operation)
        raise StorageUnavailableError(f"{operation} failed: {exc}") from exc
