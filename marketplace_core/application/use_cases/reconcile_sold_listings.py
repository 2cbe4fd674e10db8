from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID

import structlog

from marketplace_core.application.coordinators.notification_emitter import NotificationEmitter
from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.application.use_cases.void_competing_offers import (
    VoidCompetingOffers,
    announce_cancellations,
)
from marketplace_core.config import settings
from marketplace_core.domain.enums.listing_availability import ListingAvailability
from marketplace_core.domain.enums.offer_status import OfferStatus

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconcileSoldListingsOutput:
    listings_checked: int = 0
    cancelled_offer_ids: list[UUID] = field(default_factory=list)
    released_listing_ids: list[UUID] = field(default_factory=list)
    unresolved_listing_ids: list[UUID] = field(default_factory=list)


class ReconcileSoldListings:
    """
    Use case: periodic cleanup of offers left pending on sold listings.

    Safe to run repeatedly and concurrently with finalizations. For a sold
    listing with a completed offer, the other pending offers are cancelled.
    A sold listing with no completed offer is an interrupted reservation:
    once it is older than ``reservation_grace_seconds`` it is handed back
    (sold → listed) and its offers stay pending; a younger one is reported
    as unresolved and looked at again on the next run.

    Each listing is looked at once per run, so listings that cannot be
    repaired yet do not crowd the rest out of later pages.
    """

    def __init__(
        self,
        listing_registry: ListingRegistry,
        offer_store: OfferStore,
        notifier: NotificationEmitter,
        event_publisher: EventPublisher,
        *,
        voider: VoidCompetingOffers | None = None,
        batch_size: int = settings.reconcile_batch_size,
        reservation_grace_seconds: float = settings.reservation_grace_seconds,
    ) -> None:
        self._listings = listing_registry
        self._offers = offer_store
        self._notifier = notifier
        self._event_publisher = event_publisher
        self._voider = voider or VoidCompetingOffers(offer_store)
        self._batch_size = max(1, batch_size)
        self._grace = timedelta(seconds=reservation_grace_seconds)

    async def execute(self) -> ReconcileSoldListingsOutput:
        output = ReconcileSoldListingsOutput()
        seen: set[UUID] = set()

        while True:
            page = await self._offers.find_pending_on_sold_listings(
                limit=self._batch_size, exclude_listing_ids=seen
            )
            listing_ids = list(
                dict.fromkeys(o.listing_id for o in page if o.listing_id is not None and o.listing_id not in seen)
            )
            if not listing_ids:
                break

            for listing_id in listing_ids:
                seen.add(listing_id)
                output.listings_checked += 1
                await self._reconcile_listing(listing_id, output)

        logger.info(
            "reconciliation_sweep_finished",
            listings_checked=output.listings_checked,
            cancelled=len(output.cancelled_offer_ids),
            released=len(output.released_listing_ids),
            unresolved=len(output.unresolved_listing_ids),
        )
        return output

    async def _reconcile_listing(self, listing_id: UUID, output: ReconcileSoldListingsOutput) -> None:
        winners = await self._offers.list_for_listing(listing_id, status=OfferStatus.COMPLETED)
        if not winners:
            if await self._release_stale_reservation(listing_id):
                output.released_listing_ids.append(listing_id)
            else:
                output.unresolved_listing_ids.append(listing_id)
            return

        result = await self._voider.execute(listing_id, keep_offer_id=winners[0].id)
        if not result.converged:
            output.unresolved_listing_ids.append(listing_id)

        listing = await self._listings.get_by_id(listing_id)
        await announce_cancellations(
            result.cancelled,
            listing_title=listing.title if listing is not None else "your item",
            notifier=self._notifier,
            event_publisher=self._event_publisher,
            triggered_by="reconciliation_sweep",
        )
        output.cancelled_offer_ids.extend(o.id for o in result.cancelled)

    async def _release_stale_reservation(self, listing_id: UUID) -> bool:
        listing = await self._listings.get_by_id(listing_id)
        if listing is None or listing.availability is not ListingAvailability.SOLD:
            return False

        reserved_at = listing.sold_at or listing.updated_at
        if reserved_at.tzinfo is None:
            reserved_at = reserved_at.replace(tzinfo=timezone.utc)
        if _utcnow() - reserved_at < self._grace:
            logger.warning("sold_listing_without_completed_offer", listing_id=str(listing_id))
            return False

        released = await self._listings.try_transition(
            listing_id, ListingAvailability.SOLD, ListingAvailability.LISTED
        )
        if not released:
            return False

        # A commit that landed after the winner check keeps its sale
        if await self._offers.list_for_listing(listing_id, status=OfferStatus.COMPLETED):
            restored = await self._listings.try_transition(
                listing_id, ListingAvailability.LISTED, ListingAvailability.SOLD
            )
            logger.error(
                "stale_reservation_release_reverted",
                listing_id=str(listing_id),
                restored=restored,
            )
            return False

        logger.warning("stale_reservation_released", listing_id=str(listing_id))
        return True
