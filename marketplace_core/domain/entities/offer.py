from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.enums.offer_status import OfferKind, OfferStatus
from marketplace_core.domain.events.domain_events import DomainEvent, OfferCreatedEvent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidOfferError(ValueError):
    pass


@dataclass
class Offer:
    """
    A buyer's interest in a listing (a "transaction" in the marketplace UI).

    Status is owned by the offer store: instances are snapshots and are never
    mutated in place to change status. Offers are never deleted; when their
    listing is deleted ``listing_id`` becomes None.
    """

    # Identity
    id: UUID = field(default_factory=uuid4)
    listing_id: UUID | None = None

    # Parties
    buyer_id: UUID = field(default_factory=uuid4)
    seller_id: UUID = field(default_factory=uuid4)

    # Terms
    kind: OfferKind = OfferKind.PURCHASE
    amount: Decimal = Decimal("0")
    payment_method: str = "cash"

    # State
    status: OfferStatus = OfferStatus.PENDING

    # Timestamps
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    borrow_due_date: datetime | None = None

    # Pending domain events (collected and cleared by the application layer)
    _events: list[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def create_for_listing(
        cls,
        listing: Listing,
        *,
        buyer_id: UUID,
        kind: OfferKind,
        amount: Decimal | None = None,
        payment_method: str = "cash",
    ) -> "Offer":
        if listing.is_owned_by(buyer_id):
            raise InvalidOfferError("Sellers cannot make offers on their own listings.")
        if kind is not listing.offer_kind:
            raise InvalidOfferError(
                f"Listing {listing.id} accepts {listing.offer_kind.value} offers, not {kind.value}."
            )

        if amount is None:
            amount = Decimal("0") if kind is OfferKind.BORROW else listing.price
        if amount < 0:
            raise InvalidOfferError("Offer amount must not be negative.")
        if kind is OfferKind.BORROW and amount != 0:
            raise InvalidOfferError("Borrow offers carry no amount.")

        now = _utcnow()
        due_date = None
        if kind is OfferKind.BORROW and listing.borrow_duration_days:
            due_date = now + timedelta(days=listing.borrow_duration_days)

        offer = cls(
            listing_id=listing.id,
            buyer_id=buyer_id,
            seller_id=listing.owner_id,
            kind=kind,
            amount=amount,
            payment_method=payment_method,
            created_at=now,
            borrow_due_date=due_date,
        )
        offer._events.append(
            OfferCreatedEvent(
                offer_id=offer.id,
                listing_id=listing.id,
                buyer_id=buyer_id,
                seller_id=listing.owner_id,
                kind=kind,
                amount=amount,
            )
        )
        return offer

    # -------------------------------------------------------------------------
    # Parties
    # -------------------------------------------------------------------------

    def involves(self, user_id: UUID) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def counterpart_of(self, user_id: UUID) -> UUID:
        """Return the other party of the offer."""
        if user_id == self.buyer_id:
            return self.seller_id
        if user_id == self.seller_id:
            return self.buyer_id
        raise ValueError(f"User {user_id} is not a party to offer {self.id}.")

    # -------------------------------------------------------------------------
    # Event collection
    # -------------------------------------------------------------------------

    def collect_events(self) -> list[DomainEvent]:
        """Return pending events and clear the internal buffer."""
        events = list(self._events)
        self._events.clear()
        return events
