from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from marketplace_core.api.dependencies import (
    get_create_offer_use_case,
    get_current_user_id,
    get_finalize_sale_use_case,
    get_list_offers_use_case,
    get_offer_store,
)
from marketplace_core.api.schemas.offer_schemas import (
    CreateOfferRequest,
    FinalizeSaleResponse,
    ListingOffersResponse,
    OfferResponse,
    PaginatedOffersResponse,
)
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.application.use_cases.create_offer import CreateOffer, CreateOfferInput
from marketplace_core.application.use_cases.finalize_sale import FinalizeSale, FinalizeSaleInput
from marketplace_core.application.use_cases.list_offers import ListOffers, ListOffersInput
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.offer_status import OfferStatus, PartyRole

router = APIRouter(tags=["offers"])


def _offer_to_response(offer: Offer) -> OfferResponse:
    return OfferResponse.model_validate(offer)


@router.post(
    "/listings/{listing_id}/offers",
    status_code=status.HTTP_201_CREATED,
    response_model=OfferResponse,
)
async def create_offer(
    listing_id: UUID,
    body: CreateOfferRequest,
    user_id: UUID = Depends(get_current_user_id),
    use_case: CreateOffer = Depends(get_create_offer_use_case),
) -> OfferResponse:
    """Register the caller's interest in buying or borrowing a listing."""
    output = await use_case.execute(
        CreateOfferInput(
            listing_id=listing_id,
            buyer_id=user_id,
            kind=body.kind,
            amount=body.amount,
            payment_method=body.payment_method,
            pickup_location=body.pickup_location,
        )
    )
    return _offer_to_response(output.offer)


@router.get("/listings/{listing_id}/offers", response_model=ListingOffersResponse)
async def list_listing_offers(
    listing_id: UUID,
    offer_status: OfferStatus | None = Query(default=None, alias="status"),
    user_id: UUID = Depends(get_current_user_id),
    use_case: ListOffers = Depends(get_list_offers_use_case),
) -> ListingOffersResponse:
    output = await use_case.execute(
        ListOffersInput(listing_id=listing_id, requester_id=user_id, status=offer_status)
    )
    return ListingOffersResponse(
        listing_id=output.listing_id,
        offers=[_offer_to_response(o) for o in output.offers],
    )


@router.post(
    "/listings/{listing_id}/offers/{offer_id}/accept",
    response_model=FinalizeSaleResponse,
)
async def accept_offer(
    listing_id: UUID,
    offer_id: UUID,
    background_tasks: BackgroundTasks,
    user_id: UUID = Depends(get_current_user_id),
    use_case: FinalizeSale = Depends(get_finalize_sale_use_case),
) -> FinalizeSaleResponse:
    """
    Sell the listing to the buyer behind ``offer_id``.

    Exactly one accept per listing succeeds; concurrent or repeated accepts
    get 409. A retryable 503 means nothing was sold; a non-retryable one means
    the listing must be re-read. Buyers are notified after the response is sent.
    """
    output = await use_case.execute(
        FinalizeSaleInput(listing_id=listing_id, offer_id=offer_id, seller_id=user_id)
    )
    background_tasks.add_task(use_case.announce, output)
    return FinalizeSaleResponse(
        listing_id=output.listing_id,
        offer_id=output.offer_id,
        buyer_id=output.buyer_id,
        completed_at=output.completed_at,
        cancelled_offer_ids=output.cancelled_offer_ids,
        residual_offer_ids=output.residual_offer_ids,
        voiding_converged=output.voiding_converged,
    )


@router.get("/users/me/offers", response_model=PaginatedOffersResponse)
async def list_my_offers(
    role: PartyRole = Query(default=PartyRole.BUYER),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: UUID = Depends(get_current_user_id),
    offer_store: OfferStore = Depends(get_offer_store),
) -> PaginatedOffersResponse:
    """The caller's purchases (role=buyer) or sales (role=seller)."""
    offers, total = await offer_store.list_for_user(user_id, role=role, limit=limit, offset=offset)
    return PaginatedOffersResponse(
        offers=[_offer_to_response(o) for o in offers],
        total=total,
        limit=limit,
        offset=offset,
    )
