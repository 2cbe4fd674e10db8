from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_core.application.interfaces.listing_registry import ListingRegistry
from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.enums.listing_availability import ListingAvailability, ListingType
from marketplace_core.domain.state_machine.transition_rules import listing_machine
from marketplace_core.infrastructure.database.errors import storage_errors
from marketplace_core.infrastructure.database.models import ListingModel


def _to_domain(model: ListingModel) -> Listing:
    return Listing(
        id=model.id,
        owner_id=model.owner_id,
        title=model.title,
        price=Decimal(str(model.price)),
        listing_type=ListingType(model.listing_type),
        borrow_duration_days=model.borrow_duration_days,
        availability=ListingAvailability(model.availability),
        created_at=model.created_at,
        updated_at=model.updated_at,
        sold_at=model.sold_at,
    )


def _to_model(listing: Listing) -> ListingModel:
    return ListingModel(
        id=listing.id,
        owner_id=listing.owner_id,
        title=listing.title,
        price=listing.price,
        listing_type=listing.listing_type,
        borrow_duration_days=listing.borrow_duration_days,
        availability=listing.availability,
        created_at=listing.created_at,
        updated_at=listing.updated_at,
        sold_at=listing.sold_at,
    )


class SqlAlchemyListingRegistry(ListingRegistry):
    """SQLAlchemy implementation of the listing registry."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, listing: Listing) -> None:
        async with storage_errors(self._session, "listing.add"):
            self._session.add(_to_model(listing))
            await self._session.commit()

    async def get_by_id(self, listing_id: UUID) -> Listing | None:
        async with storage_errors(self._session, "listing.get"):
            model = await self._session.get(ListingModel, listing_id, populate_existing=True)
        return _to_domain(model) if model is not None else None

    async def try_transition(
        self,
        listing_id: UUID,
        expected: ListingAvailability,
        next_state: ListingAvailability,
    ) -> bool:
        listing_machine.validate_transition(expected, next_state)

        values: dict = {"availability": next_state, "updated_at": datetime.now(timezone.utc)}  # type: ignore[type-arg]
        if next_state is ListingAvailability.SOLD:
            values["sold_at"] = values["updated_at"]
        elif expected is ListingAvailability.SOLD:
            values["sold_at"] = None

        stmt = (
            update(ListingModel)
            .where(ListingModel.id == listing_id, ListingModel.availability == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with storage_errors(self._session, "listing.try_transition"):
            result = await self._session.execute(stmt)
            await self._session.commit()
        return result.rowcount == 1
