from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

import structlog

from marketplace_core.application.coordinators.notification_emitter import (
    NotificationEmitter,
    offer_request_notification,
)
from marketplace_core.application.exceptions import (
    ListingNotFoundError,
    ListingUnavailableError,
    StorageUnavailableError,
)
from marketplace_core.application.interfaces.chat_gateway import ChatGateway
from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.offer_status import OfferKind, OfferStatus

logger = structlog.get_logger(__name__)


@dataclass
class CreateOfferInput:
    listing_id: UUID
    buyer_id: UUID
    kind: OfferKind | None = None
    amount: Decimal | None = None
    payment_method: str = "cash"
    pickup_location: str | None = None


@dataclass
class CreateOfferOutput:
    offer: Offer


def _introduction_message(listing: Listing, offer: Offer, pickup_location: str | None) -> str:
    borrow = offer.kind is OfferKind.BORROW
    text = f'Hi! I\'d like to {"borrow" if borrow else "buy"} "{listing.title}"'
    if offer.payment_method == "cash":
        text += f" and meet at {pickup_location or 'school'}"
    text += "."
    if borrow and listing.borrow_duration_days:
        text += f" I'll return it within {listing.borrow_duration_days} days."
    return text + " Let me know when works for you!"


class CreateOffer:
    """
    Use case: a buyer registers interest in a listed item.

    The offer is stored pending. Because the availability check and the insert
    are separate round trips, the listing is re-read after the insert; if a
    sale landed in between, the new offer is withdrawn straight away.
    """

    def __init__(
        self,
        listing_registry: ListingRegistry,
        offer_store: OfferStore,
        notifier: NotificationEmitter,
        event_publisher: EventPublisher,
        chat: ChatGateway | None = None,
    ) -> None:
        self._listings = listing_registry
        self._offers = offer_store
        self._notifier = notifier
        self._event_publisher = event_publisher
        self._chat = chat

    async def execute(self, input_data: CreateOfferInput) -> CreateOfferOutput:
        listing = await self._listings.get_by_id(input_data.listing_id)
        if listing is None:
            raise ListingNotFoundError(input_data.listing_id)
        if not listing.accepts_offers:
            raise ListingUnavailableError(listing.id)

        # May raise InvalidOfferError
        offer = Offer.create_for_listing(
            listing,
            buyer_id=input_data.buyer_id,
            kind=input_data.kind or listing.offer_kind,
            amount=input_data.amount,
            payment_method=input_data.payment_method,
        )
        events = offer.collect_events()
        await self._offers.add(offer)

        current = await self._listings.get_by_id(listing.id)
        if current is None or not current.accepts_offers:
            await self._withdraw(offer, listing)
            raise ListingUnavailableError(listing.id)

        logger.info(
            "offer_created",
            offer_id=str(offer.id),
            listing_id=str(listing.id),
            buyer_id=str(offer.buyer_id),
            kind=offer.kind.value,
        )

        try:
            await self._event_publisher.publish_many(events)
        except Exception:
            logger.exception("offer_created_event_not_published", offer_id=str(offer.id))

        await self._notifier.emit(offer_request_notification(listing, offer.kind, offer.payment_method))

        if self._chat is not None:
            try:
                await self._chat.post_message(
                    listing_id=listing.id,
                    sender_id=offer.buyer_id,
                    receiver_id=listing.owner_id,
                    content=_introduction_message(listing, offer, input_data.pickup_location),
                )
            except Exception:
                logger.exception("offer_chat_message_failed", offer_id=str(offer.id))

        return CreateOfferOutput(offer=offer)

    async def _withdraw(self, offer: Offer, listing: Listing) -> None:
        try:
            await self._offers.try_transition(offer.id, OfferStatus.PENDING, OfferStatus.CANCELLED)
        except StorageUnavailableError:
            # Stays pending; the sweep cancels it if the listing was sold
            logger.warning(
                "offer_withdrawal_failed",
                offer_id=str(offer.id),
                listing_id=str(listing.id),
                exc_info=True,
            )
            return
        logger.info("offer_withdrawn_listing_unavailable", offer_id=str(offer.id), listing_id=str(listing.id))
