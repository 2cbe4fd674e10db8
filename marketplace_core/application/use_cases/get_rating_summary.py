from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from marketplace_core.application.interfaces.rating_repository import RatingRepository
from marketplace_core.domain.entities.rating import Rating


@dataclass
class RatingSummary:
    user_id: UUID
    count: int
    averages: dict[str, Decimal | None] = field(default_factory=dict)
    ratings: list[Rating] = field(default_factory=list)


def _average(values: list[int]) -> Decimal | None:
    if not values:
        return None
    return (Decimal(sum(values)) / len(values)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class GetRatingSummary:
    """Use case: a user's received ratings with per-dimension averages."""

    def __init__(self, rating_repo: RatingRepository) -> None:
        self._ratings = rating_repo

    async def execute(self, user_id: UUID) -> RatingSummary:
        ratings = await self._ratings.list_for_rated_user(user_id)
        return RatingSummary(
            user_id=user_id,
            count=len(ratings),
            averages={
                "communication": _average([r.scores.communication for r in ratings]),
                "transaction_speed": _average([r.scores.transaction_speed for r in ratings]),
                "product_quality": _average(
                    [r.scores.product_quality for r in ratings if r.scores.product_quality is not None]
                ),
            },
            ratings=ratings,
        )
