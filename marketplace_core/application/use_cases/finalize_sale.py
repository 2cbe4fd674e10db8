import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

import structlog

from marketplace_core.application.coordinators.notification_emitter import (
    NotificationEmitter,
    purchase_confirmed_notification,
)
from marketplace_core.application.exceptions import (
    AlreadyFinalizedError,
    NotAuthorizedError,
    OfferInvalidError,
    SaleOutcomeUnknownError,
    StorageUnavailableError,
)
from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.application.interfaces.store_scope import SaleStores, SharedStoreScope, StoreScope
from marketplace_core.application.use_cases.void_competing_offers import (
    VoidCompetingOffers,
    VoidCompetingOffersOutput,
    cancellation_events,
    cancellation_notifications,
)
from marketplace_core.config import settings
from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.listing_availability import ListingAvailability
from marketplace_core.domain.enums.offer_status import OfferStatus
from marketplace_core.domain.events.domain_events import ListingSoldEvent, OfferCompletedEvent

logger = structlog.get_logger(__name__)

# Sales still running after their caller went away
_in_flight: set[asyncio.Task] = set()  # type: ignore[type-arg]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _forget(task: asyncio.Task) -> None:  # type: ignore[type-arg]
    _in_flight.discard(task)
    if not task.cancelled():
        # Outcomes of abandoned sales are already logged
        task.exception()


@dataclass
class FinalizeSaleInput:
    listing_id: UUID
    offer_id: UUID
    seller_id: UUID


@dataclass
class FinalizeSaleOutput:
    listing_id: UUID
    offer_id: UUID
    buyer_id: UUID
    completed_at: datetime
    cancelled_offer_ids: list[UUID] = field(default_factory=list)
    residual_offer_ids: list[UUID] = field(default_factory=list)
    voiding_converged: bool = True
    listing_title: str = ""
    seller_id: UUID | None = None
    cancelled_offers: list[Offer] = field(default_factory=list, repr=False)


class FinalizeSale:
    """
    Use case: the seller accepts one offer and the listing is sold to it.

    Protocol, in order:

    1. Reserve the listing with a listed → sold compare-and-swap. This is the
       linearization point: exactly one concurrent attempt per listing gets
       past it, every other one ends with AlreadyFinalizedError.
    2. Commit the chosen offer pending → completed. If that conditional
       transition does not apply, the reservation is released (sold → listed)
       and the attempt fails with OfferInvalidError.
    3. Void the competing offers. Best-effort with bounded retries; leftovers
       are picked up by ReconcileSoldListings.
    4. Announce the sale: events plus one batch of notifications. ``execute``
       returns after step 3; the caller schedules ``announce`` with the output
       so the fan-out never holds up the seller.

    Only the precondition reads run under the overall timeout. Steps 1 to 3
    run in a task of their own, on stores opened from ``store_scope``, so
    neither a timeout nor a cancelled request can cut in between the
    reservation and the commit. A caller that gave up must re-read the
    listing, not retry.
    """

    def __init__(
        self,
        listing_registry: ListingRegistry,
        offer_store: OfferStore,
        notifier: NotificationEmitter,
        event_publisher: EventPublisher,
        *,
        store_scope: StoreScope | None = None,
        voider: VoidCompetingOffers | None = None,
        timeout_seconds: float = settings.finalize_timeout_seconds,
    ) -> None:
        self._listings = listing_registry
        self._offers = offer_store
        self._notifier = notifier
        self._event_publisher = event_publisher
        self._scope = store_scope or SharedStoreScope(SaleStores(listing_registry, offer_store))
        self._voider = voider or VoidCompetingOffers(offer_store)
        self._timeout = timeout_seconds

    async def execute(self, input_data: FinalizeSaleInput) -> FinalizeSaleOutput:
        try:
            listing, offer = await asyncio.wait_for(
                self._check_preconditions(input_data), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "finalization_timed_out",
                listing_id=str(input_data.listing_id),
                offer_id=str(input_data.offer_id),
            )
            raise StorageUnavailableError(
                f"Finalization of listing {input_data.listing_id} timed out before the listing was reserved."
            ) from exc

        task = asyncio.create_task(self._sell(listing, offer))
        _in_flight.add(task)
        task.add_done_callback(_forget)
        return await asyncio.shield(task)

    async def announce(self, output: FinalizeSaleOutput) -> None:
        """Step 4. Never raises; a lost announcement does not affect the sale."""
        try:
            async with self._scope.open() as stores:
                notifier = self._notifier if stores.inbox is None else self._notifier.with_inbox(stores.inbox)
                await self._publish_sale(output)
                await notifier.emit_many(
                    [
                        purchase_confirmed_notification(output.buyer_id, output.listing_id, output.listing_title),
                        *cancellation_notifications(output.cancelled_offers, listing_title=output.listing_title),
                    ]
                )
        except Exception:
            logger.exception("sale_announcement_failed", listing_id=str(output.listing_id))

    # -------------------------------------------------------------------------
    # Preconditions
    # -------------------------------------------------------------------------

    async def _check_preconditions(self, input_data: FinalizeSaleInput) -> tuple[Listing, Offer]:
        listing = await self._listings.get_by_id(input_data.listing_id)
        if listing is None or not listing.is_owned_by(input_data.seller_id):
            logger.warning(
                "finalization_not_authorized",
                listing_id=str(input_data.listing_id),
                seller_id=str(input_data.seller_id),
            )
            raise NotAuthorizedError(input_data.seller_id, f"listing {input_data.listing_id}")

        offer = await self._offers.get_by_id(input_data.offer_id)
        if offer is None or offer.listing_id != listing.id:
            raise OfferInvalidError(input_data.offer_id, "offer does not belong to this listing")

        if offer.status is not OfferStatus.PENDING:
            # A concurrent finalization may already have voided this offer
            current = await self._listings.get_by_id(listing.id)
            if current is not None and current.availability is ListingAvailability.SOLD:
                raise AlreadyFinalizedError(listing.id)
            raise OfferInvalidError(offer.id, f"offer is {offer.status.value}")

        return listing, offer

    # -------------------------------------------------------------------------
    # Steps 1 to 3
    # -------------------------------------------------------------------------

    async def _sell(self, listing: Listing, offer: Offer) -> FinalizeSaleOutput:
        async with self._scope.open() as stores:
            await self._reserve(stores.listings, listing, offer)

            completed_at = _utcnow()
            await self._commit_offer(stores, listing, offer, completed_at)
            logger.info(
                "sale_committed",
                listing_id=str(listing.id),
                offer_id=str(offer.id),
                buyer_id=str(offer.buyer_id),
            )

            voided = await self._void_competitors(stores.offers, listing, offer)

        return FinalizeSaleOutput(
            listing_id=listing.id,
            offer_id=offer.id,
            buyer_id=offer.buyer_id,
            completed_at=completed_at,
            cancelled_offer_ids=[o.id for o in voided.cancelled],
            residual_offer_ids=voided.residual_offer_ids,
            voiding_converged=voided.converged,
            listing_title=listing.title,
            seller_id=listing.owner_id,
            cancelled_offers=voided.cancelled,
        )

    async def _reserve(self, listings: ListingRegistry, listing: Listing, offer: Offer) -> None:
        try:
            reserved = await listings.try_transition(
                listing.id, ListingAvailability.LISTED, ListingAvailability.SOLD
            )
        except StorageUnavailableError as exc:
            # The write may have landed even though no answer came back
            current = await self._read_listing(listings, listing.id)
            if current is not None and current.availability is ListingAvailability.LISTED:
                raise
            if current is None or current.availability is ListingAvailability.SOLD:
                logger.error(
                    "sale_reservation_outcome_unknown",
                    listing_id=str(listing.id),
                    offer_id=str(offer.id),
                )
                raise SaleOutcomeUnknownError(listing.id) from exc
            raise AlreadyFinalizedError(listing.id) from exc

        if not reserved:
            logger.info(
                "finalization_lost_race",
                listing_id=str(listing.id),
                offer_id=str(offer.id),
            )
            raise AlreadyFinalizedError(listing.id)

    async def _commit_offer(
        self, stores: SaleStores, listing: Listing, offer: Offer, completed_at: datetime
    ) -> None:
        try:
            committed = await stores.offers.try_transition(
                offer.id, OfferStatus.PENDING, OfferStatus.COMPLETED, at=completed_at
            )
        except StorageUnavailableError as exc:
            committed = await self._committed_despite_error(stores.offers, offer)
            if committed is None:
                # Keep the listing reserved; the sweep hands it back if no sale shows up
                logger.error(
                    "sale_commit_outcome_unknown",
                    listing_id=str(listing.id),
                    offer_id=str(offer.id),
                )
                raise SaleOutcomeUnknownError(listing.id) from exc
            if not committed:
                await self._release(stores.listings, listing, offer)
                raise
            return

        if not committed:
            await self._release(stores.listings, listing, offer)
            raise OfferInvalidError(offer.id, "offer changed while the sale was being recorded")

    async def _committed_despite_error(self, offers: OfferStore, offer: Offer) -> bool | None:
        try:
            current = await offers.get_by_id(offer.id)
        except StorageUnavailableError:
            return None
        if current is None:
            return False
        return current.status is OfferStatus.COMPLETED

    async def _read_listing(self, listings: ListingRegistry, listing_id: UUID) -> Listing | None:
        try:
            return await listings.get_by_id(listing_id)
        except StorageUnavailableError:
            return None

    async def _release(self, listings: ListingRegistry, listing: Listing, offer: Offer) -> None:
        """Compensation for step 2: hand the listing back to other buyers."""
        try:
            released = await listings.try_transition(
                listing.id, ListingAvailability.SOLD, ListingAvailability.LISTED
            )
        except StorageUnavailableError:
            released = False
        if released:
            logger.warning("listing_reservation_released", listing_id=str(listing.id), offer_id=str(offer.id))
        else:
            logger.error("listing_reservation_release_failed", listing_id=str(listing.id), offer_id=str(offer.id))

    async def _void_competitors(
        self, offers: OfferStore, listing: Listing, offer: Offer
    ) -> VoidCompetingOffersOutput:
        try:
            return await self._voider.with_store(offers).execute(listing.id, keep_offer_id=offer.id)
        except Exception:
            logger.exception("competing_offer_voiding_failed", listing_id=str(listing.id))
            return VoidCompetingOffersOutput(listing_id=listing.id)

    # -------------------------------------------------------------------------
    # Step 4
    # -------------------------------------------------------------------------

    async def _publish_sale(self, output: FinalizeSaleOutput) -> None:
        try:
            await self._event_publisher.publish_many(
                [
                    ListingSoldEvent(
                        listing_id=output.listing_id,
                        offer_id=output.offer_id,
                        buyer_id=output.buyer_id,
                        seller_id=output.seller_id,
                    ),
                    OfferCompletedEvent(
                        offer_id=output.offer_id,
                        listing_id=output.listing_id,
                        buyer_id=output.buyer_id,
                        completed_at=output.completed_at,
                    ),
                    *cancellation_events(output.cancelled_offers, triggered_by="finalize_sale"),
                ]
            )
        except Exception:
            logger.exception("sale_events_not_published", listing_id=str(output.listing_id))
