"""
FastAPI dependency injection wiring.

Each dependency function returns a fully-constructed object with its
collaborators injected, keeping the route handlers thin. Notifications get a
session of their own so that a dropped notification cannot disturb the
session a sale is committing through. A sale runs on stores from
``get_store_scope`` because it may outlive the request.
"""
from collections.abc import AsyncGenerator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_core.application.coordinators.notification_emitter import NotificationEmitter
from marketplace_core.application.interfaces.chat_gateway import ChatGateway
from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.application.interfaces.notification_inbox import NotificationInbox
from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.application.interfaces.rating_repository import RatingRepository
from marketplace_core.application.interfaces.store_scope import StoreScope
from marketplace_core.application.use_cases.create_offer import CreateOffer
from marketplace_core.application.use_cases.finalize_sale import FinalizeSale
from marketplace_core.application.use_cases.get_rating_summary import GetRatingSummary
from marketplace_core.application.use_cases.list_offers import ListOffers
from marketplace_core.application.use_cases.reconcile_sold_listings import ReconcileSoldListings
from marketplace_core.application.use_cases.submit_rating import SubmitRating
from marketplace_core.config import settings
from marketplace_core.infrastructure.database.connection import get_db_session
from marketplace_core.infrastructure.database.repositories.listing_registry import (
    SqlAlchemyListingRegistry,
)
from marketplace_core.infrastructure.database.repositories.notification_inbox import (
    SqlAlchemyNotificationInbox,
)
from marketplace_core.infrastructure.database.repositories.offer_store import SqlAlchemyOfferStore
from marketplace_core.infrastructure.database.repositories.rating_repository import (
    SqlAlchemyRatingRepository,
)
from marketplace_core.infrastructure.database.store_scope import SqlAlchemyStoreScope
from marketplace_core.infrastructure.external_services.chat_client import ChatClient
from marketplace_core.infrastructure.messaging.noop_publisher import NoOpEventPublisher
from marketplace_core.infrastructure.messaging.rabbitmq_publisher import RabbitMQPublisher


# ---- Caller identity -------------------------------------------------------

def get_current_user_id(x_user_id: str | None = Header(default=None)) -> UUID:
    """The authenticated user, as asserted by the gateway in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header.")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Malformed X-User-Id header.")


# ---- Low-level dependencies ------------------------------------------------

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db_session():
        yield session


async def get_notification_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db_session():
        yield session


def get_listing_registry(session: AsyncSession = Depends(get_session)) -> ListingRegistry:
    return SqlAlchemyListingRegistry(session)


def get_offer_store(session: AsyncSession = Depends(get_session)) -> OfferStore:
    return SqlAlchemyOfferStore(session)


def get_rating_repo(session: AsyncSession = Depends(get_session)) -> RatingRepository:
    return SqlAlchemyRatingRepository(session)


def get_notification_inbox(
    session: AsyncSession = Depends(get_notification_session),
) -> NotificationInbox:
    return SqlAlchemyNotificationInbox(session)


def get_store_scope() -> StoreScope:
    return SqlAlchemyStoreScope()


def get_event_publisher() -> EventPublisher:
    if settings.events_enabled:
        return RabbitMQPublisher()
    return NoOpEventPublisher()


def get_chat_gateway() -> ChatGateway | None:
    if not settings.chat_api_key:
        return None
    return ChatClient()


def get_notifier(
    inbox: NotificationInbox = Depends(get_notification_inbox),
    event_publisher: EventPublisher = Depends(get_event_publisher),
) -> NotificationEmitter:
    return NotificationEmitter(inbox, event_publisher)


# ---- Use-case dependencies -------------------------------------------------

def get_create_offer_use_case(
    listing_registry: ListingRegistry = Depends(get_listing_registry),
    offer_store: OfferStore = Depends(get_offer_store),
    notifier: NotificationEmitter = Depends(get_notifier),
    event_publisher: EventPublisher = Depends(get_event_publisher),
    chat: ChatGateway | None = Depends(get_chat_gateway),
) -> CreateOffer:
    return CreateOffer(listing_registry, offer_store, notifier, event_publisher, chat)


def get_list_offers_use_case(
    listing_registry: ListingRegistry = Depends(get_listing_registry),
    offer_store: OfferStore = Depends(get_offer_store),
) -> ListOffers:
    return ListOffers(listing_registry, offer_store)


def get_finalize_sale_use_case(
    listing_registry: ListingRegistry = Depends(get_listing_registry),
    offer_store: OfferStore = Depends(get_offer_store),
    notifier: NotificationEmitter = Depends(get_notifier),
    event_publisher: EventPublisher = Depends(get_event_publisher),
    store_scope: StoreScope = Depends(get_store_scope),
) -> FinalizeSale:
    return FinalizeSale(listing_registry, offer_store, notifier, event_publisher, store_scope=store_scope)


def get_submit_rating_use_case(
    offer_store: OfferStore = Depends(get_offer_store),
    rating_repo: RatingRepository = Depends(get_rating_repo),
    event_publisher: EventPublisher = Depends(get_event_publisher),
) -> SubmitRating:
    return SubmitRating(offer_store, rating_repo, event_publisher)


def get_rating_summary_use_case(
    rating_repo: RatingRepository = Depends(get_rating_repo),
) -> GetRatingSummary:
    return GetRatingSummary(rating_repo)


def get_reconcile_use_case(
    listing_registry: ListingRegistry = Depends(get_listing_registry),
    offer_store: OfferStore = Depends(get_offer_store),
    notifier: NotificationEmitter = Depends(get_notifier),
    event_publisher: EventPublisher = Depends(get_event_publisher),
) -> ReconcileSoldListings:
    return ReconcileSoldListings(listing_registry, offer_store, notifier, event_publisher)
