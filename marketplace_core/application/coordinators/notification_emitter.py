"""
Best-effort notification fan-out.

A notification is written to the recipient's inbox and announced on the
realtime feed. Nothing here ever raises to the caller: a lost notification
costs user experience, never correctness of a sale.
"""
import asyncio
from uuid import UUID

import structlog

from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.application.interfaces.notification_inbox import NotificationInbox
from marketplace_core.config import settings
from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.entities.notification import Notification
from marketplace_core.domain.enums.notification_kind import NotificationKind
from marketplace_core.domain.enums.offer_status import OfferKind
from marketplace_core.domain.events.domain_events import NotificationCreatedEvent

logger = structlog.get_logger(__name__)


def offer_request_notification(listing: Listing, kind: OfferKind, payment_method: str) -> Notification:
    borrow = kind is OfferKind.BORROW
    verb = "borrow" if borrow else "buy"
    suffix = ". Meet at the selected pickup location." if payment_method == "cash" else "."
    return Notification(
        recipient_id=listing.owner_id,
        kind=NotificationKind.BORROW_REQUEST if borrow else NotificationKind.PURCHASE_REQUEST,
        title="Someone wants to borrow your item!" if borrow else "You have a new buyer!",
        message=f'Someone wants to {verb} your listing "{listing.title}"{suffix}',
        listing_id=listing.id,
    )


def purchase_confirmed_notification(buyer_id: UUID, listing_id: UUID, title: str) -> Notification:
    return Notification(
        recipient_id=buyer_id,
        kind=NotificationKind.PURCHASE_CONFIRMED,
        title="Purchase Confirmed!",
        message=(
            f'Your purchase of "{title}" has been accepted by the seller. '
            "You can now rate the seller."
        ),
        listing_id=listing_id,
    )


def item_sold_notification(buyer_id: UUID, listing_id: UUID | None, title: str) -> Notification:
    return Notification(
        recipient_id=buyer_id,
        kind=NotificationKind.ITEM_SOLD,
        title="Item Sold",
        message=f'Unfortunately, "{title}" has been sold to another buyer.',
        listing_id=listing_id,
    )


def _created_event(notification: Notification) -> NotificationCreatedEvent:
    return NotificationCreatedEvent(
        notification_id=notification.id,
        recipient_id=notification.recipient_id,
        kind=notification.kind,
        title=notification.title,
        message=notification.message,
        listing_id=notification.listing_id,
    )


class NotificationEmitter:
    def __init__(
        self,
        inbox: NotificationInbox,
        event_publisher: EventPublisher,
        timeout_seconds: float = settings.notification_timeout_seconds,
    ) -> None:
        self._inbox = inbox
        self._event_publisher = event_publisher
        self._timeout = timeout_seconds

    async def emit(self, notification: Notification) -> bool:
        """Deliver one notification; returns False if it was dropped."""
        try:
            await asyncio.wait_for(self._deliver(notification), timeout=self._timeout)
        except Exception:
            logger.exception(
                "notification_dropped",
                notification_id=str(notification.id),
                recipient_id=str(notification.recipient_id),
                kind=notification.kind.value,
            )
            return False

        logger.debug(
            "notification_delivered",
            notification_id=str(notification.id),
            recipient_id=str(notification.recipient_id),
            kind=notification.kind.value,
        )
        return True

    async def emit_many(self, notifications: list[Notification]) -> int:
        """
        Deliver a batch with a single inbox write under one timeout, however
        many recipients there are. Returns how many were delivered: all or none.
        """
        if not notifications:
            return 0
        try:
            await asyncio.wait_for(self._deliver_many(notifications), timeout=self._timeout)
        except Exception:
            logger.exception("notifications_dropped", count=len(notifications))
            return 0

        logger.debug("notifications_delivered", count=len(notifications))
        return len(notifications)

    def with_inbox(self, inbox: NotificationInbox) -> "NotificationEmitter":
        return NotificationEmitter(inbox, self._event_publisher, self._timeout)

    async def _deliver(self, notification: Notification) -> None:
        await self._inbox.add(notification)
        await self._event_publisher.publish(_created_event(notification))

    async def _deliver_many(self, notifications: list[Notification]) -> None:
        await self._inbox.add_many(notifications)
        await self._event_publisher.publish_many([_created_event(n) for n in notifications])
