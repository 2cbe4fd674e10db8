from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_core.application.interfaces.store_scope import SaleStores, StoreScope
from marketplace_core.infrastructure.database.connection import AsyncSessionLocal
from marketplace_core.infrastructure.database.repositories.listing_registry import (
    SqlAlchemyListingRegistry,
)
from marketplace_core.infrastructure.database.repositories.notification_inbox import (
    SqlAlchemyNotificationInbox,
)
from marketplace_core.infrastructure.database.repositories.offer_store import SqlAlchemyOfferStore


class SqlAlchemyStoreScope(StoreScope):
    """
    Opens a private session for listings and offers, and a second one for the
    inbox so that a dropped notification cannot disturb the sale's session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def open(self) -> AsyncIterator[SaleStores]:
        async with self._session_factory() as session, self._session_factory() as notification_session:
            yield SaleStores(
                listings=SqlAlchemyListingRegistry(session),
                offers=SqlAlchemyOfferStore(session),
                inbox=SqlAlchemyNotificationInbox(notification_session),
            )
