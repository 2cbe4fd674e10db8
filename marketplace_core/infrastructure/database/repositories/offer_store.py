from collections.abc import Collection
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_core.application.interfaces.offer_store import OfferStore
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.listing_availability import ListingAvailability
from marketplace_core.domain.enums.offer_status import OfferKind, OfferStatus, PartyRole
from marketplace_core.domain.state_machine.transition_rules import offer_machine
from marketplace_core.infrastructure.database.errors import storage_errors
from marketplace_core.infrastructure.database.models import ListingModel, OfferModel


def _to_domain(model: OfferModel) -> Offer:
    return Offer(
        id=model.id,
        listing_id=model.listing_id,
        buyer_id=model.buyer_id,
        seller_id=model.seller_id,
        kind=OfferKind(model.kind),
        amount=Decimal(str(model.amount)),
        payment_method=model.payment_method,
        status=OfferStatus(model.status),
        created_at=model.created_at,
        completed_at=model.completed_at,
        cancelled_at=model.cancelled_at,
        borrow_due_date=model.borrow_due_date,
    )


def _to_model(offer: Offer) -> OfferModel:
    return OfferModel(
        id=offer.id,
        listing_id=offer.listing_id,
        buyer_id=offer.buyer_id,
        seller_id=offer.seller_id,
        kind=offer.kind,
        amount=offer.amount,
        payment_method=offer.payment_method,
        status=offer.status,
        created_at=offer.created_at,
        completed_at=offer.completed_at,
        cancelled_at=offer.cancelled_at,
        borrow_due_date=offer.borrow_due_date,
    )


class SqlAlchemyOfferStore(OfferStore):
    """SQLAlchemy implementation of the offer store."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, offer: Offer) -> None:
        async with storage_errors(self._session, "offer.add"):
            self._session.add(_to_model(offer))
            await self._session.commit()

    async def get_by_id(self, offer_id: UUID) -> Offer | None:
        async with storage_errors(self._session, "offer.get"):
            model = await self._session.get(OfferModel, offer_id, populate_existing=True)
        return _to_domain(model) if model is not None else None

    async def try_transition(
        self,
        offer_id: UUID,
        expected: OfferStatus,
        next_state: OfferStatus,
        *,
        at: datetime | None = None,
    ) -> bool:
        offer_machine.validate_transition(expected, next_state)

        at = at or datetime.now(timezone.utc)
        stamp = "completed_at" if next_state is OfferStatus.COMPLETED else "cancelled_at"
        stmt = (
            update(OfferModel)
            .where(OfferModel.id == offer_id, OfferModel.status == expected)
            .values({"status": next_state, stamp: at})
            .execution_options(synchronize_session=False)
        )
        async with storage_errors(self._session, "offer.try_transition"):
            result = await self._session.execute(stmt)
            await self._session.commit()
        return result.rowcount == 1

    async def list_for_listing(
        self, listing_id: UUID, *, status: OfferStatus | None = None
    ) -> list[Offer]:
        query = select(OfferModel).where(OfferModel.listing_id == listing_id)
        if status is not None:
            query = query.where(OfferModel.status == status)
        query = query.order_by(OfferModel.created_at.asc())

        async with storage_errors(self._session, "offer.list_for_listing"):
            result = await self._session.execute(query.execution_options(populate_existing=True))
            models = result.scalars().all()
        return [_to_domain(m) for m in models]

    async def list_for_user(
        self, user_id: UUID, *, role: PartyRole, limit: int = 50, offset: int = 0
    ) -> tuple[list[Offer], int]:
        column = OfferModel.buyer_id if role is PartyRole.BUYER else OfferModel.seller_id

        query = (
            select(OfferModel)
            .where(column == user_id)
            .order_by(OfferModel.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        count_query = select(func.count()).select_from(OfferModel).where(column == user_id)

        async with storage_errors(self._session, "offer.list_for_user"):
            result = await self._session.execute(query.execution_options(populate_existing=True))
            models = result.scalars().all()

            count_result = await self._session.execute(count_query)
            total = count_result.scalar_one()

        return [_to_domain(m) for m in models], total

    async def find_pending_on_sold_listings(
        self, *, limit: int = 200, exclude_listing_ids: Collection[UUID] = ()
    ) -> list[Offer]:
        conditions = [
            OfferModel.status == OfferStatus.PENDING,
            ListingModel.availability == ListingAvailability.SOLD,
        ]
        if exclude_listing_ids:
            conditions.append(OfferModel.listing_id.not_in(list(exclude_listing_ids)))

        query = (
            select(OfferModel)
            .join(ListingModel, ListingModel.id == OfferModel.listing_id)
            .where(*conditions)
            .order_by(OfferModel.created_at.asc())
            .limit(limit)
        )
        async with storage_errors(self._session, "offer.find_pending_on_sold_listings"):
            result = await self._session.execute(query.execution_options(populate_existing=True))
            models = result.scalars().all()
        return [_to_domain(m) for m in models]
