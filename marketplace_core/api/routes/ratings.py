from uuid import UUID

from fastapi import APIRouter, Depends, status

from marketplace_core.api.dependencies import (
    get_current_user_id,
    get_rating_summary_use_case,
    get_submit_rating_use_case,
)
from marketplace_core.api.schemas.rating_schemas import (
    RatingResponse,
    RatingSummaryResponse,
    SubmitRatingRequest,
)
from marketplace_core.application.use_cases.get_rating_summary import GetRatingSummary
from marketplace_core.application.use_cases.submit_rating import SubmitRating, SubmitRatingInput
from marketplace_core.domain.entities.rating import Rating

router = APIRouter(tags=["ratings"])


def _rating_to_response(rating: Rating) -> RatingResponse:
    return RatingResponse(
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


@router.post(
    "/offers/{offer_id}/ratings",
    status_code=status.HTTP_201_CREATED,
    response_model=RatingResponse,
)
async def submit_rating(
    offer_id: UUID,
    body: SubmitRatingRequest,
    user_id: UUID = Depends(get_current_user_id),
    use_case: SubmitRating = Depends(get_submit_rating_use_case),
) -> RatingResponse:
    """Rate the other party of a completed offer. Allowed once per party."""
    output = await use_case.execute(
        SubmitRatingInput(
            offer_id=offer_id,
            rater_id=user_id,
            communication=body.communication,
            transaction_speed=body.transaction_speed,
            product_quality=body.product_quality,
            comment=body.comment,
        )
    )
    return _rating_to_response(output.rating)


@router.get("/users/{user_id}/ratings", response_model=RatingSummaryResponse)
async def get_user_ratings(
    user_id: UUID,
    use_case: GetRatingSummary = Depends(get_rating_summary_use_case),
) -> RatingSummaryResponse:
    summary = await use_case.execute(user_id)
    return RatingSummaryResponse(
        user_id=summary.user_id,
        count=summary.count,
        averages=summary.averages,
        ratings=[_rating_to_response(r) for r in summary.ratings],
    )
