from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from marketplace_core.domain.enums.listing_availability import ListingAvailability, ListingType
from marketplace_core.domain.enums.offer_status import OfferKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidListingError(ValueError):
    pass


@dataclass
class Listing:
    """
    An item a seller has put up for sale or lending.

    Listings are authored outside this service; here they are only read and
    moved between availability states through the registry's conditional
    transition. The instance is a snapshot and may be stale.
    """

    id: UUID = field(default_factory=uuid4)
    owner_id: UUID = field(default_factory=uuid4)

    title: str = ""
    price: Decimal = Decimal("0")
    listing_type: ListingType = ListingType.SALE
    borrow_duration_days: int | None = None

    availability: ListingAvailability = ListingAvailability.PENDING_REVIEW

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    sold_at: datetime | None = None

    @classmethod
    def create(
        cls,
        *,
        owner_id: UUID,
        title: str,
        price: Decimal,
        listing_type: ListingType = ListingType.SALE,
        borrow_duration_days: int | None = None,
        availability: ListingAvailability = ListingAvailability.PENDING_REVIEW,
    ) -> "Listing":
        if price < 0:
            raise InvalidListingError("price must not be negative")
        if borrow_duration_days is not None and borrow_duration_days <= 0:
            raise InvalidListingError("borrow_duration_days must be positive")
        return cls(
            owner_id=owner_id,
            title=title,
            price=price,
            listing_type=listing_type,
            borrow_duration_days=borrow_duration_days,
            availability=availability,
        )

    @property
    def accepts_offers(self) -> bool:
        return self.availability.accepts_offers

    @property
    def offer_kind(self) -> OfferKind:
        """The only kind of offer this listing accepts."""
        return OfferKind.BORROW if self.listing_type is ListingType.BORROW else OfferKind.PURCHASE

    def is_owned_by(self, user_id: UUID) -> bool:
        return self.owner_id == user_id
