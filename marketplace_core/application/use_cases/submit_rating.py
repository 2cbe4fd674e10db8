from dataclasses import dataclass
from uuid import UUID

import structlog

from marketplace_core.application.exceptions import (
    DuplicateRatingError,
    NotAuthorizedError,
    OfferNotCompletedError,
)
from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.application.interfaces.rating_repository import RatingRepository
from marketplace_core.domain.entities.rating import Rating, RatingScores
from marketplace_core.domain.enums.offer_status import OfferStatus
from marketplace_core.domain.events.domain_events import RatingSubmittedEvent

logger = structlog.get_logger(__name__)


@dataclass
class SubmitRatingInput:
    offer_id: UUID
    rater_id: UUID
    communication: int
    transaction_speed: int
    product_quality: int | None = None
    comment: str | None = None


@dataclass
class SubmitRatingOutput:
    rating: Rating


class SubmitRating:
    """
    Use case: one party of a completed offer rates the other.

    Single-shot: one rating per (offer, rater), no update or delete.
    """

    def __init__(
        self,
        offer_store: OfferStore,
        rating_repo: RatingRepository,
        event_publisher: EventPublisher,
    ) -> None:
        self._offers = offer_store
        self._ratings = rating_repo
        self._event_publisher = event_publisher

    async def execute(self, input_data: SubmitRatingInput) -> SubmitRatingOutput:
        offer = await self._offers.get_by_id(input_data.offer_id)
        if offer is None or offer.status is not OfferStatus.COMPLETED:
            raise OfferNotCompletedError(input_data.offer_id)
        if not offer.involves(input_data.rater_id):
            raise NotAuthorizedError(input_data.rater_id, f"offer {offer.id}")

        # May raise InvalidRatingError
        scores = RatingScores(
            communication=input_data.communication,
            transaction_speed=input_data.transaction_speed,
            product_quality=input_data.product_quality,
        )

        if await self._ratings.exists(offer.id, input_data.rater_id):
            raise DuplicateRatingError(offer.id, input_data.rater_id)

        rating = Rating.for_offer(
            offer, rater_id=input_data.rater_id, scores=scores, comment=input_data.comment
        )
        # The unique (offer, rater) constraint still guards a concurrent duplicate
        await self._ratings.add(rating)

        logger.info(
            "rating_submitted",
            rating_id=str(rating.id),
            offer_id=str(offer.id),
            rated_user_id=str(rating.rated_user_id),
        )

        try:
            await self._event_publisher.publish(
                RatingSubmittedEvent(
                    rating_id=rating.id,
                    offer_id=offer.id,
                    rater_id=rating.rater_id,
                    rated_user_id=rating.rated_user_id,
                )
            )
        except Exception:
            logger.exception("rating_event_not_published", rating_id=str(rating.id))

        return SubmitRatingOutput(rating=rating)
