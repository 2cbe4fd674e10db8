from dataclasses import dataclass
from uuid import UUID

from marketplace_core.application.exceptions import ListingNotFoundError
from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.offer_status import OfferStatus


@dataclass
class ListOffersInput:
    listing_id: UUID
    requester_id: UUID
    status: OfferStatus | None = None


@dataclass
class ListOffersOutput:
    listing_id: UUID
    offers: list[Offer]


class ListOffers:
    """
    Use case: the "interested buyers" view of a listing.

    The owner sees every offer; anybody else only sees their own.
    """

    def __init__(self, listing_registry: ListingRegistry, offer_store: OfferStore) -> None:
        self._listings = listing_registry
        self._offers = offer_store

    async def execute(self, input_data: ListOffersInput) -> ListOffersOutput:
        listing = await self._listings.get_by_id(input_data.listing_id)
        if listing is None:
            raise ListingNotFoundError(input_data.listing_id)

        offers = await self._offers.list_for_listing(listing.id, status=input_data.status)
        if not listing.is_owned_by(input_data.requester_id):
            offers = [o for o in offers if o.buyer_id == input_data.requester_id]

        return ListOffersOutput(listing_id=listing.id, offers=offers)
