from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class SubmitRatingRequest(BaseModel):
    communication: int
    transaction_speed: int
    product_quality: int | None = None
    comment: str | None = Field(default=None, max_length=2000)


class RatingResponse(BaseModel):
    id: UUID
    offer_id: UUID
    rater_id: UUID
    rated_user_id: UUID
    communication: int
    transaction_speed: int
    product_quality: int | None = None
    comment: str | None = None
    created_at: datetime


class RatingSummaryResponse(BaseModel):
    user_id: UUID
    count: int
    averages: dict[str, Decimal | None]
    ratings: list[RatingResponse]
