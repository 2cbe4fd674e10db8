from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from marketplace_core.domain.enums.listing_availability import ListingAvailability, ListingType


class ListingResponse(BaseModel):
    id: UUID
    owner_id: UUID
    title: str
    price: Decimal
    listing_type: ListingType
    borrow_duration_days: int | None = None
    availability: ListingAvailability
    created_at: datetime
    updated_at: datetime
    sold_at: datetime | None = None

    model_config = {"from_attributes": True}


class ModerateListingRequest(BaseModel):
    to_state: ListingAvailability
    reason: str | None = None


class ReconcileResponse(BaseModel):
    listings_checked: int
    cancelled_offer_ids: list[UUID]
    released_listing_ids: list[UUID]
    unresolved_listing_ids: list[UUID]
