from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID, uuid4

from marketplace_core.domain.entities.offer import Offer

MIN_SCORE = 1
MAX_SCORE = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidRatingError(ValueError):
    pass


@dataclass(frozen=True)
class RatingScores:
    communication: int
    transaction_speed: int
    product_quality: int | None = None

    def __post_init__(self) -> None:
        for name in ("communication", "transaction_speed", "product_quality"):
            value = getattr(self, name)
            if value is None and name == "product_quality":
                continue
            if not isinstance(value, int) or not MIN_SCORE <= value <= MAX_SCORE:
                raise InvalidRatingError(f"{name} must be an integer between {MIN_SCORE} and {MAX_SCORE}.")


@dataclass(frozen=True)
class Rating:
    """Immutable review left by one party of a completed offer about the other."""

    offer_id: UUID
    rater_id: UUID
    rated_user_id: UUID
    scores: RatingScores
    comment: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def for_offer(
        cls, offer: Offer, *, rater_id: UUID, scores: RatingScores, comment: str | None = None
    ) -> "Rating":
        return cls(
            offer_id=offer.id,
            rater_id=rater_id,
            rated_user_id=offer.counterpart_of(rater_id),
            scores=scores,
            comment=(comment or "").strip() or None,
        )
