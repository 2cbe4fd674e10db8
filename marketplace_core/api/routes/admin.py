from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from marketplace_core.api.dependencies import get_listing_registry, get_reconcile_use_case
from marketplace_core.api.schemas.listing_responses import (
    ListingResponse,
    ModerateListingRequest,
    ReconcileResponse,
)
from marketplace_core.application.exceptions import ListingNotFoundError
from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.application.use_cases.reconcile_sold_listings import ReconcileSoldListings
from marketplace_core.domain.enums.listing_availability import ListingAvailability

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

# Moderation never sells or un-sells a listing
_MODERATION_STATES = frozenset({ListingAvailability.LISTED, ListingAvailability.REJECTED})


@router.get("/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: UUID,
    registry: ListingRegistry = Depends(get_listing_registry),
) -> ListingResponse:
    listing = await registry.get_by_id(listing_id)
    if listing is None:
        raise ListingNotFoundError(listing_id)
    return ListingResponse.model_validate(listing)


@router.post("/listings/{listing_id}/moderate", response_model=ListingResponse)
async def moderate_listing(
    listing_id: UUID,
    body: ModerateListingRequest,
    registry: ListingRegistry = Depends(get_listing_registry),
) -> ListingResponse:
    """Approve or reject a listing under review, or take a listed item down."""
    if body.to_state not in _MODERATION_STATES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Moderation can only list or reject a listing.",
        )

    listing = await registry.get_by_id(listing_id)
    if listing is None:
        raise ListingNotFoundError(listing_id)
    if listing.availability is ListingAvailability.SOLD:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Listing has been sold.")

    # May raise InvalidStateTransitionError (422)
    if not await registry.try_transition(listing_id, listing.availability, body.to_state):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Listing changed while it was being moderated.",
        )

    logger.info(
        "listing_moderated",
        listing_id=str(listing_id),
        from_state=listing.availability.value,
        to_state=body.to_state.value,
        reason=body.reason,
    )
    updated = await registry.get_by_id(listing_id)
    return ListingResponse.model_validate(updated)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_sold_listings(
    use_case: ReconcileSoldListings = Depends(get_reconcile_use_case),
) -> ReconcileResponse:
    """Run the stale-offer sweep now instead of waiting for the timer."""
    output = await use_case.execute()
    return ReconcileResponse(
        listings_checked=output.listings_checked,
        cancelled_offer_ids=output.cancelled_offer_ids,
        released_listing_ids=output.released_listing_ids,
        unresolved_listing_ids=output.unresolved_listing_ids,
    )
