from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime
from uuid import UUID

from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.offer_status import OfferStatus, PartyRole


class OfferStore(ABC):
    """Port for persisting offers and moving them through their status machine."""

    @abstractmethod
    async def add(self, offer: Offer) -> None:
        ...

    @abstractmethod
    async def get_by_id(self, offer_id: UUID) -> Offer | None:
        ...

    @abstractmethod
    async def try_transition(
        self,
        offer_id: UUID,
        expected: OfferStatus,
        next_state: OfferStatus,
        *,
        at: datetime | None = None,
    ) -> bool:
        """
        Compare-and-swap on the stored status, stamping completed_at or
        cancelled_at with ``at`` (defaults to now). Same contract as
        ListingRegistry.try_transition.
        """
        ...

    @abstractmethod
    async def list_for_listing(
        self, listing_id: UUID, *, status: OfferStatus | None = None
    ) -> list[Offer]:
        """Snapshot read, oldest first. May be stale relative to concurrent writers."""
        ...

    @abstractmethod
    async def list_for_user(
        self, user_id: UUID, *, role: PartyRole, limit: int = 50, offset: int = 0
    ) -> tuple[list[Offer], int]:
        """Return (offers, total_count), newest first."""
        ...

    @abstractmethod
    async def find_pending_on_sold_listings(
        self, *, limit: int = 200, exclude_listing_ids: Collection[UUID] = ()
    ) -> list[Offer]:
        """Pending offers whose listing is already sold, oldest first."""
        ...
