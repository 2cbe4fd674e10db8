import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import UUID

import structlog

from marketplace_core.application.coordinators.notification_emitter import (
    NotificationEmitter,
    item_sold_notification,
)
from marketplace_core.application.exceptions import StorageUnavailableError
from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.application.retry import compute_backoff_seconds
from marketplace_core.config import settings
from marketplace_core.domain.entities.notification import Notification
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.offer_status import OfferStatus
from marketplace_core.domain.events.domain_events import OfferCancelledEvent

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class VoidCompetingOffersOutput:
    listing_id: UUID
    cancelled: list[Offer] = field(default_factory=list)
    residual_offer_ids: list[UUID] = field(default_factory=list)
    converged: bool = False
    attempts: int = 0


class VoidCompetingOffers:
    """
    Cancels every pending offer on a sold listing except the accepted one.

    Works from a snapshot read and moves each offer with a conditional
    pending → cancelled transition. An offer that already left pending is
    skipped, so running this twice over the same listing changes nothing.
    Transient storage failures are retried with backoff; whatever is still
    pending after the last attempt is reported as residual for the sweep.
    """

    def __init__(
        self,
        offer_store: OfferStore,
        *,
        max_attempts: int = settings.void_max_attempts,
        backoff_base_seconds: float = settings.void_backoff_base_seconds,
        backoff_cap_seconds: float = settings.void_backoff_cap_seconds,
    ) -> None:
        self._offer_store = offer_store
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base_seconds
        self._backoff_cap = backoff_cap_seconds

    def with_store(self, offer_store: OfferStore) -> "VoidCompetingOffers":
        """Same retry policy, working against another offer store."""
        return VoidCompetingOffers(
            offer_store,
            max_attempts=self._max_attempts,
            backoff_base_seconds=self._backoff_base,
            backoff_cap_seconds=self._backoff_cap,
        )

    async def execute(
        self, listing_id: UUID, *, keep_offer_id: UUID | None
    ) -> VoidCompetingOffersOutput:
        output = VoidCompetingOffersOutput(listing_id=listing_id)

        for attempt in range(1, self._max_attempts + 1):
            output.attempts = attempt
            if attempt > 1:
                await asyncio.sleep(
                    compute_backoff_seconds(attempt - 1, self._backoff_base, self._backoff_cap)
                )

            try:
                snapshot = await self._offer_store.list_for_listing(
                    listing_id, status=OfferStatus.PENDING
                )
            except StorageUnavailableError:
                logger.warning("competing_offer_snapshot_failed", listing_id=str(listing_id), attempt=attempt)
                continue

            residual: list[UUID] = []
            for offer in snapshot:
                if offer.id == keep_offer_id:
                    continue
                now = _utcnow()
                try:
                    moved = await self._offer_store.try_transition(
                        offer.id, OfferStatus.PENDING, OfferStatus.CANCELLED, at=now
                    )
                except StorageUnavailableError:
                    residual.append(offer.id)
                    continue
                # False means the offer already left pending on its own
                if moved:
                    output.cancelled.append(
                        replace(offer, status=OfferStatus.CANCELLED, cancelled_at=now, _events=[])
                    )

            output.residual_offer_ids = residual
            if not residual:
                output.converged = True
                break

        if not output.converged:
            logger.warning(
                "competing_offers_left_pending",
                listing_id=str(listing_id),
                residual_offer_ids=[str(i) for i in output.residual_offer_ids],
                attempts=output.attempts,
            )
        return output


def cancellation_events(cancelled: list[Offer], *, triggered_by: str) -> list[OfferCancelledEvent]:
    return [
        OfferCancelledEvent(
            offer_id=offer.id,
            listing_id=offer.listing_id,
            buyer_id=offer.buyer_id,
            triggered_by=triggered_by,
        )
        for offer in cancelled
    ]


def cancellation_notifications(cancelled: list[Offer], *, listing_title: str) -> list[Notification]:
    return [item_sold_notification(offer.buyer_id, offer.listing_id, listing_title) for offer in cancelled]


async def announce_cancellations(
    cancelled: list[Offer],
    *,
    listing_title: str,
    notifier: NotificationEmitter,
    event_publisher: EventPublisher,
    triggered_by: str,
) -> None:
    """Tell each buyer whose offer was voided; never raises."""
    events = cancellation_events(cancelled, triggered_by=triggered_by)
    try:
        await event_publisher.publish_many(events)
    except Exception:
        logger.exception("offer_cancelled_events_not_published", count=len(events))

    await notifier.emit_many(cancellation_notifications(cancelled, listing_title=listing_title))
