from enum import Enum


class OfferStatus(str, Enum):
    """All possible states of a buyer's offer against a listing."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Terminal states cannot be transitioned out of."""
        return self in (OfferStatus.COMPLETED, OfferStatus.CANCELLED)


class OfferKind(str, Enum):
    PURCHASE = "purchase"
    BORROW = "borrow"


class PartyRole(str, Enum):
    """Which side of an offer a user is looking at."""

    BUYER = "buyer"
    SELLER = "seller"
