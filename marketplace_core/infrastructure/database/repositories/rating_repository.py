from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_core.application.exceptions import DuplicateRatingError
from marketplace_core.application.interfaces.rating_repository import RatingRepository
from marketplace_core.domain.entities.rating import Rating, RatingScores
from marketplace_core.infrastructure.database.errors import storage_errors
from marketplace_core.infrastructure.database.models import RatingModel


def _to_domain(model: RatingModel) -> Rating:
    return Rating(
        id=model.id,
        offer_id=model.offer_id,
        rater_id=model.rater_id,
        rated_user_id=model.rated_user_id,
        scores=RatingScores(
            communication=model.communication,
            transaction_speed=model.transaction_speed,
            product_quality=model.product_quality,
        ),
        comment=model.comment,
        created_at=model.created_at,
    )


def _to_model(rating: Rating) -> RatingModel:
    return RatingModel(
        id=rating.id,
        offer_id=rating.offer_id,
        rater_id=rating.rater_id,
        rated_user_id=rating.rated_user_id,
        communication=rating.scores.communication,
        transaction_speed=rating.scores.transaction_speed,
        product_quality=rating.scores.product_quality,
        comment=rating.comment,
        created_at=rating.created_at,
    )


class SqlAlchemyRatingRepository(RatingRepository):
    """SQLAlchemy implementation for rating persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, rating: Rating) -> None:
        async with storage_errors(self._session, "rating.add"):
            self._session.add(_to_model(rating))
            try:
                await self._session.commit()
            except IntegrityError as exc:
                await self._session.rollback()
                # uq_ratings_offer_rater lost a race with a concurrent submit
                raise DuplicateRatingError(rating.offer_id, rating.rater_id) from exc

    async def exists(self, offer_id: UUID, rater_id: UUID) -> bool:
        query = select(RatingModel.id).where(
            RatingModel.offer_id == offer_id, RatingModel.rater_id == rater_id
        )
        async with storage_errors(self._session, "rating.exists"):
            result = await self._session.execute(query)
            return result.scalar_one_or_none() is not None

    async def list_for_rated_user(self, user_id: UUID) -> list[Rating]:
        query = (
            select(RatingModel)
            .where(RatingModel.rated_user_id == user_id)
            .order_by(RatingModel.created_at.desc())
        )
        async with storage_errors(self._session, "rating.list_for_rated_user"):
            result = await self._session.execute(query)
            models = result.scalars().all()
        return [_to_domain(m) for m in models]
