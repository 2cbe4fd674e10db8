from enum import Enum


class ListingAvailability(str, Enum):
    """Availability of a listing. Only LISTED accepts offers or a finalization."""

    PENDING_REVIEW = "pending_review"
    LISTED = "listed"
    REJECTED = "rejected"
    SOLD = "sold"

    @property
    def accepts_offers(self) -> bool:
        return self is ListingAvailability.LISTED


class ListingType(str, Enum):
    SALE = "sale"
    BORROW = "borrow"
