"""
Stores for work that must outlive the request that started it.

Request-scoped repositories share a session that is closed when the request
ends, even if a shielded task is still using it. A StoreScope opens stores on
connections owned by whoever enters ``open()``.
"""
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass

from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.application.interfaces.notification_inbox import NotificationInbox
from marketplace_core.application.interfaces.offer_store import OfferStore


@dataclass
class SaleStores:
    listings: ListingRegistry
    offers: OfferStore
    inbox: NotificationInbox | None = None


class StoreScope(ABC):
    @abstractmethod
    def open(self) -> AbstractAsyncContextManager[SaleStores]:
        ...


class SharedStoreScope(StoreScope):
    """Hands out the same stores every time; for stores not tied to a session."""

    def __init__(self, stores: SaleStores) -> None:
        self._stores = stores

    @asynccontextmanager
    async def open(self) -> AsyncIterator[SaleStores]:
        yield self._stores
