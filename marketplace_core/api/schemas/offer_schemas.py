from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from marketplace_core.domain.enums.offer_status import OfferKind, OfferStatus


class CreateOfferRequest(BaseModel):
    kind: OfferKind | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    payment_method: str = Field(default="cash", max_length=32)
    pickup_location: str | None = Field(default=None, max_length=256)


class OfferResponse(BaseModel):
    id: UUID
    listing_id: UUID | None
    buyer_id: UUID
    seller_id: UUID
    kind: OfferKind
    amount: Decimal
    payment_method: str
    status: OfferStatus
    created_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    borrow_due_date: datetime | None = None

    model_config = {"from_attributes": True}


class ListingOffersResponse(BaseModel):
    listing_id: UUID
    offers: list[OfferResponse]


class PaginatedOffersResponse(BaseModel):
    offers: list[OfferResponse]
    total: int
    limit: int
    offset: int


class FinalizeSaleResponse(BaseModel):
    listing_id: UUID
    offer_id: UUID
    buyer_id: UUID
    completed_at: datetime
    cancelled_offer_ids: list[UUID]
    residual_offer_ids: list[UUID]
    voiding_converged: bool
