from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from marketplace_core.domain.enums.notification_kind import NotificationKind
from marketplace_core.domain.enums.offer_status import OfferKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class OfferCreatedEvent(DomainEvent):
    """Published when a buyer registers interest in a listing."""

    offer_id: UUID = field(default_factory=uuid4)
    listing_id: UUID = field(default_factory=uuid4)
    buyer_id: UUID = field(default_factory=uuid4)
    seller_id: UUID = field(default_factory=uuid4)
    kind: OfferKind = OfferKind.PURCHASE
    amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class ListingSoldEvent(DomainEvent):
    """Published once the sale of a listing has committed."""

    listing_id: UUID = field(default_factory=uuid4)
    offer_id: UUID = field(default_factory=uuid4)
    buyer_id: UUID = field(default_factory=uuid4)
    seller_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class OfferCompletedEvent(DomainEvent):
    offer_id: UUID = field(default_factory=uuid4)
    listing_id: UUID = field(default_factory=uuid4)
    buyer_id: UUID = field(default_factory=uuid4)
    completed_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class OfferCancelledEvent(DomainEvent):
    """Published for each competing offer voided after a sale."""

    offer_id: UUID = field(default_factory=uuid4)
    listing_id: UUID | None = None
    buyer_id: UUID = field(default_factory=uuid4)
    triggered_by: str = ""


@dataclass(frozen=True)
class RatingSubmittedEvent(DomainEvent):
    rating_id: UUID = field(default_factory=uuid4)
    offer_id: UUID = field(default_factory=uuid4)
    rater_id: UUID = field(default_factory=uuid4)
    rated_user_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class NotificationCreatedEvent(DomainEvent):
    """Feeds a recipient's realtime subscription."""

    notification_id: UUID = field(default_factory=uuid4)
    recipient_id: UUID = field(default_factory=uuid4)
    kind: NotificationKind = NotificationKind.ITEM_SOLD
    title: str = ""
    message: str = ""
    listing_id: UUID | None = None
