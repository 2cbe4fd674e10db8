"""
Unit tests for the sale finalization protocol.

Runs against the in-memory store, whose operations yield to the event loop,
so coroutines gathered together genuinely interleave between round trips.
"""
import asyncio
from collections.abc import Callable
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from marketplace_core.application.coordinators.notification_emitter import NotificationEmitter
from marketplace_core.application.exceptions import (
    AlreadyFinalizedError,
    NotAuthorizedError,
    OfferInvalidError,
    SaleOutcomeUnknownError,
    StorageUnavailableError,
)
from marketplace_core.application.interfaces.store_scope import SaleStores, SharedStoreScope
from marketplace_core.application.use_cases.finalize_sale import FinalizeSale, FinalizeSaleInput
from marketplace_core.application.use_cases.void_competing_offers import VoidCompetingOffers
from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.entities.notification import Notification
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.listing_availability import ListingAvailability
from marketplace_core.domain.enums.notification_kind import NotificationKind
from marketplace_core.domain.enums.offer_status import OfferKind, OfferStatus
from marketplace_core.domain.events.domain_events import (
    ListingSoldEvent,
    OfferCancelledEvent,
    OfferCompletedEvent,
)
from marketplace_core.infrastructure.messaging.noop_publisher import NoOpEventPublisher
from tests.support.in_memory_store import (
    InMemoryDatabase,
    InMemoryListingRegistry,
    InMemoryNotificationInbox,
    InMemoryOfferStore,
)


class _World:
    def __init__(
        self,
        offer_store_factory: Callable[[InMemoryDatabase], InMemoryOfferStore] = InMemoryOfferStore,
    ) -> None:
        self.db = InMemoryDatabase()
        self.listings = InMemoryListingRegistry(self.db)
        self.offers = offer_store_factory(self.db)
        self.inbox = InMemoryNotificationInbox(self.db)
        self.publisher = NoOpEventPublisher()
        self.notifier = NotificationEmitter(self.inbox, self.publisher, timeout_seconds=1.0)

    def use_case(self, **kwargs) -> FinalizeSale:  # type: ignore[no-untyped-def]
        voider = kwargs.pop(
            "voider",
            VoidCompetingOffers(self.offers, max_attempts=3, backoff_base_seconds=0.0),
        )
        return FinalizeSale(self.listings, self.offers, self.notifier, self.publisher, voider=voider, **kwargs)

    async def listed_item(self, title: str = "Mini fridge") -> Listing:
        listing = Listing.create(
            owner_id=uuid4(),
            title=title,
            price=Decimal("40.00"),
            availability=ListingAvailability.LISTED,
        )
        await self.listings.add(listing)
        return listing

    async def offer_on(self, listing: Listing) -> Offer:
        offer = Offer.create_for_listing(listing, buyer_id=uuid4(), kind=OfferKind.PURCHASE)
        await self.offers.add(offer)
        return offer

    def status_of(self, offer: Offer) -> OfferStatus:
        return self.db.offers[offer.id].status

    def availability_of(self, listing: Listing) -> ListingAvailability:
        return self.db.listings[listing.id].availability

    def notifications_for(self, user_id: UUID) -> list[Notification]:
        return [n for n in self.db.notifications.values() if n.recipient_id == user_id]


def _accept(listing: Listing, offer: Offer, seller_id: UUID | None = None) -> FinalizeSaleInput:
    return FinalizeSaleInput(
        listing_id=listing.id, offer_id=offer.id, seller_id=seller_id or listing.owner_id
    )


class TestFinalizeSaleSuccess:
    @pytest.mark.asyncio
    async def test_sells_listing_and_voids_competitors(self) -> None:
        world = _World()
        listing = await world.listed_item()
        chosen = await world.offer_on(listing)
        others = [await world.offer_on(listing) for _ in range(2)]

        output = await world.use_case().execute(_accept(listing, chosen))

        assert output.buyer_id == chosen.buyer_id
        assert world.availability_of(listing) == ListingAvailability.SOLD
        assert world.db.listings[listing.id].sold_at is not None
        assert world.status_of(chosen) == OfferStatus.COMPLETED
        assert world.db.offers[chosen.id].completed_at == output.completed_at
        assert all(world.status_of(o) == OfferStatus.CANCELLED for o in others)
        assert set(output.cancelled_offer_ids) == {o.id for o in others}
        assert output.residual_offer_ids == []
        assert output.voiding_converged is True

    @pytest.mark.asyncio
    async def test_notifies_winner_and_losers(self) -> None:
        world = _World()
        listing = await world.listed_item(title="Bike lock")
        chosen = await world.offer_on(listing)
        loser = await world.offer_on(listing)
        use_case = world.use_case()

        output = await use_case.execute(_accept(listing, chosen))
        assert world.db.notifications == {}
        await use_case.announce(output)

        [confirmed] = world.notifications_for(chosen.buyer_id)
        assert confirmed.kind == NotificationKind.PURCHASE_CONFIRMED
        assert "Bike lock" in confirmed.message
        [sold] = world.notifications_for(loser.buyer_id)
        assert sold.kind == NotificationKind.ITEM_SOLD
        assert sold.title == "Item Sold"

    @pytest.mark.asyncio
    async def test_publishes_sale_events(self) -> None:
        world = _World()
        listing = await world.listed_item()
        chosen = await world.offer_on(listing)
        await world.offer_on(listing)
        use_case = world.use_case()

        await use_case.announce(await use_case.execute(_accept(listing, chosen)))

        types = [type(e) for e in world.publisher.published]
        assert types.count(ListingSoldEvent) == 1
        assert types.count(OfferCompletedEvent) == 1
        assert types.count(OfferCancelledEvent) == 1

    @pytest.mark.asyncio
    async def test_single_offer_listing(self) -> None:
        world = _World()
        listing = await world.listed_item()
        chosen = await world.offer_on(listing)

        output = await world.use_case().execute(_accept(listing, chosen))

        assert output.cancelled_offer_ids == []
        assert world.status_of(chosen) == OfferStatus.COMPLETED


class TestFinalizeSalePreconditions:
    @pytest.mark.asyncio
    async def test_non_owner_is_rejected_without_side_effects(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offer = await world.offer_on(listing)

        with pytest.raises(NotAuthorizedError):
            await world.use_case().execute(_accept(listing, offer, seller_id=uuid4()))

        assert world.availability_of(listing) == ListingAvailability.LISTED
        assert world.status_of(offer) == OfferStatus.PENDING
        assert world.publisher.published == []

    @pytest.mark.asyncio
    async def test_buyer_cannot_accept_own_offer(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offer = await world.offer_on(listing)

        with pytest.raises(NotAuthorizedError):
            await world.use_case().execute(_accept(listing, offer, seller_id=offer.buyer_id))

    @pytest.mark.asyncio
    async def test_missing_listing_is_not_authorized(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        del world.db.listings[listing.id]

        with pytest.raises(NotAuthorizedError):
            await world.use_case().execute(_accept(listing, offer))

    @pytest.mark.asyncio
    async def test_offer_from_another_listing_is_invalid(self) -> None:
        world = _World()
        listing = await world.listed_item()
        elsewhere = await world.offer_on(await world.listed_item())

        with pytest.raises(OfferInvalidError):
            await world.use_case().execute(_accept(listing, elsewhere))

        assert world.availability_of(listing) == ListingAvailability.LISTED

    @pytest.mark.asyncio
    async def test_unknown_offer_is_invalid(self) -> None:
        world = _World()
        listing = await world.listed_item()

        with pytest.raises(OfferInvalidError):
            await world.use_case().execute(
                FinalizeSaleInput(listing_id=listing.id, offer_id=uuid4(), seller_id=listing.owner_id)
            )

    @pytest.mark.asyncio
    async def test_cancelled_offer_on_listed_item_is_invalid(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        await world.offers.try_transition(offer.id, OfferStatus.PENDING, OfferStatus.CANCELLED)

        with pytest.raises(OfferInvalidError):
            await world.use_case().execute(_accept(listing, offer))

        assert world.availability_of(listing) == ListingAvailability.LISTED

    @pytest.mark.asyncio
    async def test_rejected_listing_cannot_be_finalized(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        await world.listings.try_transition(
            listing.id, ListingAvailability.LISTED, ListingAvailability.REJECTED
        )

        with pytest.raises(AlreadyFinalizedError):
            await world.use_case().execute(_accept(listing, offer))

        assert world.status_of(offer) == OfferStatus.PENDING


class TestFinalizeSaleRaces:
    @pytest.mark.asyncio
    async def test_second_accept_after_sale_is_already_finalized(self) -> None:
        world = _World()
        listing = await world.listed_item()
        first = await world.offer_on(listing)
        second = await world.offer_on(listing)
        use_case = world.use_case()

        await use_case.execute(_accept(listing, first))
        with pytest.raises(AlreadyFinalizedError):
            await use_case.execute(_accept(listing, second))

        assert world.status_of(first) == OfferStatus.COMPLETED
        assert world.status_of(second) == OfferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_repeating_the_same_accept_is_already_finalized(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        use_case = world.use_case()

        await use_case.execute(_accept(listing, offer))
        with pytest.raises(AlreadyFinalizedError):
            await use_case.execute(_accept(listing, offer))

    @pytest.mark.asyncio
    async def test_concurrent_accepts_of_two_offers(self) -> None:
        world = _World()
        listing = await world.listed_item()
        a = await world.offer_on(listing)
        b = await world.offer_on(listing)
        use_case = world.use_case()

        results = await asyncio.gather(
            use_case.execute(_accept(listing, a)),
            use_case.execute(_accept(listing, b)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], AlreadyFinalizedError)

        winner_id = successes[0].offer_id
        loser = b if winner_id == a.id else a
        assert world.db.offers[winner_id].status == OfferStatus.COMPLETED
        assert world.status_of(loser) == OfferStatus.CANCELLED
        assert world.availability_of(listing) == ListingAvailability.SOLD

    @pytest.mark.asyncio
    async def test_many_concurrent_accepts_produce_one_sale(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offers = [await world.offer_on(listing) for _ in range(6)]
        use_case = world.use_case()

        results = await asyncio.gather(
            *(use_case.execute(_accept(listing, o)) for o in offers),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, BaseException)) == 1
        assert all(
            isinstance(r, AlreadyFinalizedError) for r in results if isinstance(r, BaseException)
        )
        statuses = [world.status_of(o) for o in offers]
        assert statuses.count(OfferStatus.COMPLETED) == 1
        assert statuses.count(OfferStatus.CANCELLED) == 5


class _OfferChangedUnderfoot(InMemoryOfferStore):
    """Cancels the offer just before the completion transition lands."""

    async def try_transition(self, offer_id, expected, next_state, *, at=None):  # type: ignore[no-untyped-def]
        if next_state is OfferStatus.COMPLETED:
            await super().try_transition(offer_id, OfferStatus.PENDING, OfferStatus.CANCELLED)
        return await super().try_transition(offer_id, expected, next_state, at=at)


class _FlakyCommit(InMemoryOfferStore):
    """Fails the completion transition, optionally after applying it."""

    def __init__(self, db: InMemoryDatabase, *, applied: bool) -> None:
        super().__init__(db)
        self._applied = applied

    async def try_transition(self, offer_id, expected, next_state, *, at=None):  # type: ignore[no-untyped-def]
        if next_state is OfferStatus.COMPLETED:
            if self._applied:
                await super().try_transition(offer_id, expected, next_state, at=at)
            raise StorageUnavailableError("connection reset")
        return await super().try_transition(offer_id, expected, next_state, at=at)


class TestFinalizeSaleFailures:
    @pytest.mark.asyncio
    async def test_offer_changed_after_reservation_releases_listing(self) -> None:
        world = _World(_OfferChangedUnderfoot)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)

        with pytest.raises(OfferInvalidError):
            await world.use_case().execute(_accept(listing, offer))

        assert world.availability_of(listing) == ListingAvailability.LISTED
        assert world.db.listings[listing.id].sold_at is None

    @pytest.mark.asyncio
    async def test_storage_failure_on_commit_releases_listing(self) -> None:
        world = _World(lambda db: _FlakyCommit(db, applied=False))
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        competitor = await world.offer_on(listing)

        with pytest.raises(StorageUnavailableError) as exc_info:
            await world.use_case().execute(_accept(listing, offer))

        assert exc_info.value.retryable is True
        assert world.availability_of(listing) == ListingAvailability.LISTED
        assert world.status_of(offer) == OfferStatus.PENDING
        assert world.status_of(competitor) == OfferStatus.PENDING

    @pytest.mark.asyncio
    async def test_storage_failure_after_commit_landed_still_succeeds(self) -> None:
        world = _World(lambda db: _FlakyCommit(db, applied=True))
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        competitor = await world.offer_on(listing)

        output = await world.use_case().execute(_accept(listing, offer))

        assert output.offer_id == offer.id
        assert world.availability_of(listing) == ListingAvailability.SOLD
        assert world.status_of(competitor) == OfferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_timeout_before_reservation_is_retryable(self) -> None:
        class _SlowRegistry(InMemoryListingRegistry):
            async def get_by_id(self, listing_id):  # type: ignore[no-untyped-def]
                await asyncio.sleep(0.5)
                return await super().get_by_id(listing_id)

        world = _World()
        world.listings = _SlowRegistry(world.db)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)

        with pytest.raises(StorageUnavailableError) as exc_info:
            await world.use_case(timeout_seconds=0.05).execute(_accept(listing, offer))

        assert exc_info.value.retryable is True
        assert world.availability_of(listing) == ListingAvailability.LISTED
        assert world.status_of(offer) == OfferStatus.PENDING

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_sale(self) -> None:
        class _BrokenInbox(InMemoryNotificationInbox):
            async def add(self, notification):  # type: ignore[no-untyped-def]
                raise StorageUnavailableError("inbox down")

            async def add_many(self, notifications):  # type: ignore[no-untyped-def]
                raise StorageUnavailableError("inbox down")

        world = _World()
        world.notifier = NotificationEmitter(_BrokenInbox(world.db), world.publisher, timeout_seconds=1.0)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        await world.offer_on(listing)
        use_case = world.use_case()

        output = await use_case.execute(_accept(listing, offer))
        await use_case.announce(output)

        assert output.offer_id == offer.id
        assert world.db.notifications == {}
        assert world.availability_of(listing) == ListingAvailability.SOLD

    @pytest.mark.asyncio
    async def test_commit_outcome_unknown_keeps_listing_reserved(self) -> None:
        class _GoesDark(_FlakyCommit):
            """Stops answering reads once the commit has failed."""

            dark = False

            async def try_transition(self, offer_id, expected, next_state, *, at=None):  # type: ignore[no-untyped-def]
                if next_state is OfferStatus.COMPLETED:
                    self.dark = True
                return await super().try_transition(offer_id, expected, next_state, at=at)

            async def get_by_id(self, offer_id):  # type: ignore[no-untyped-def]
                if self.dark:
                    raise StorageUnavailableError("connection reset")
                return await super().get_by_id(offer_id)

        world = _World(lambda db: _GoesDark(db, applied=False))
        listing = await world.listed_item()
        offer = await world.offer_on(listing)

        with pytest.raises(SaleOutcomeUnknownError) as exc_info:
            await world.use_case().execute(_accept(listing, offer))

        assert exc_info.value.retryable is False
        assert world.availability_of(listing) == ListingAvailability.SOLD
        assert world.status_of(offer) == OfferStatus.PENDING

    @pytest.mark.asyncio
    async def test_unconverged_voiding_reports_residual_offers(self) -> None:
        class _StuckCancels(InMemoryOfferStore):
            async def try_transition(self, offer_id, expected, next_state, *, at=None):  # type: ignore[no-untyped-def]
                if next_state is OfferStatus.CANCELLED:
                    raise StorageUnavailableError("lock timeout")
                return await super().try_transition(offer_id, expected, next_state, at=at)

        world = _World(_StuckCancels)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        stuck = await world.offer_on(listing)

        output = await world.use_case().execute(_accept(listing, offer))

        assert output.voiding_converged is False
        assert output.residual_offer_ids == [stuck.id]
        assert world.status_of(stuck) == OfferStatus.PENDING
        assert world.status_of(offer) == OfferStatus.COMPLETED


class _SlowReservation(InMemoryListingRegistry):
    """Applies listed → sold, then takes a while to answer."""

    def __init__(self, db: InMemoryDatabase, *, delay: float, fail_after: bool = False) -> None:
        super().__init__(db)
        self._delay = delay
        self._fail_after = fail_after
        self.reserving = asyncio.Event()

    async def try_transition(self, listing_id, expected, next_state):  # type: ignore[no-untyped-def]
        applied = await super().try_transition(listing_id, expected, next_state)
        if next_state is ListingAvailability.SOLD:
            self.reserving.set()
            await asyncio.sleep(self._delay)
            if self._fail_after:
                raise StorageUnavailableError("connection reset")
        return applied


class _RequestScopedOfferStore(InMemoryOfferStore):
    """Stands in for stores whose session is closed once the request ends."""

    async def try_transition(self, offer_id, expected, next_state, *, at=None):  # type: ignore[no-untyped-def]
        raise RuntimeError("session is closed")

    async def list_for_listing(self, listing_id, *, status=None):  # type: ignore[no-untyped-def]
        raise RuntimeError("session is closed")


class _CountingScope(SharedStoreScope):
    def __init__(self, stores: SaleStores) -> None:
        super().__init__(stores)
        self.opened = 0

    def open(self):  # type: ignore[no-untyped-def]
        self.opened += 1
        return super().open()


class TestFinalizeSaleRunsToCompletion:
    @pytest.mark.asyncio
    async def test_slow_reservation_is_not_cut_short_by_the_timeout(self) -> None:
        world = _World()
        world.listings = _SlowReservation(world.db, delay=0.3)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        competitor = await world.offer_on(listing)

        output = await world.use_case(timeout_seconds=0.1).execute(_accept(listing, offer))

        assert output.offer_id == offer.id
        assert world.availability_of(listing) == ListingAvailability.SOLD
        assert world.status_of(offer) == OfferStatus.COMPLETED
        assert world.status_of(competitor) == OfferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_reservation_that_landed_without_answer_is_not_retryable(self) -> None:
        world = _World()
        world.listings = _SlowReservation(world.db, delay=0.0, fail_after=True)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)

        with pytest.raises(SaleOutcomeUnknownError) as exc_info:
            await world.use_case().execute(_accept(listing, offer))

        assert exc_info.value.retryable is False
        assert world.availability_of(listing) == ListingAvailability.SOLD
        assert world.status_of(offer) == OfferStatus.PENDING

    @pytest.mark.asyncio
    async def test_reservation_that_never_landed_is_retryable(self) -> None:
        class _Unreachable(InMemoryListingRegistry):
            async def try_transition(self, listing_id, expected, next_state):  # type: ignore[no-untyped-def]
                raise StorageUnavailableError("connection refused")

        world = _World()
        world.listings = _Unreachable(world.db)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)

        with pytest.raises(StorageUnavailableError) as exc_info:
            await world.use_case().execute(_accept(listing, offer))

        assert exc_info.value.retryable is True
        assert world.availability_of(listing) == ListingAvailability.LISTED

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_strand_the_reservation(self) -> None:
        world = _World()
        registry = _SlowReservation(world.db, delay=0.05)
        world.listings = registry
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        competitor = await world.offer_on(listing)

        caller = asyncio.create_task(world.use_case().execute(_accept(listing, offer)))
        await registry.reserving.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await asyncio.sleep(0.2)

        assert world.availability_of(listing) == ListingAvailability.SOLD
        assert world.status_of(offer) == OfferStatus.COMPLETED
        assert world.status_of(competitor) == OfferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_sale_and_announcement_use_stores_from_their_own_scope(self) -> None:
        world = _World()
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        loser = await world.offer_on(listing)
        scope = _CountingScope(
            SaleStores(
                listings=InMemoryListingRegistry(world.db),
                offers=InMemoryOfferStore(world.db),
                inbox=InMemoryNotificationInbox(world.db),
            )
        )
        closed = _RequestScopedOfferStore(world.db)
        use_case = FinalizeSale(
            world.listings,
            closed,
            world.notifier,
            world.publisher,
            store_scope=scope,
            voider=VoidCompetingOffers(closed, max_attempts=1, backoff_base_seconds=0.0),
        )

        output = await use_case.execute(_accept(listing, offer))
        await use_case.announce(output)

        assert scope.opened == 2
        assert world.status_of(offer) == OfferStatus.COMPLETED
        assert world.status_of(loser) == OfferStatus.CANCELLED
        assert [n.kind for n in world.notifications_for(loser.buyer_id)] == [NotificationKind.ITEM_SOLD]


class TestFinalizeSaleAnnouncement:
    @staticmethod
    def _hanging_inbox(db: InMemoryDatabase) -> InMemoryNotificationInbox:
        class _Hanging(InMemoryNotificationInbox):
            async def add(self, notification):  # type: ignore[no-untyped-def]
                await asyncio.sleep(10)

            async def add_many(self, notifications):  # type: ignore[no-untyped-def]
                await asyncio.sleep(10)

        return _Hanging(db)

    @pytest.mark.asyncio
    async def test_hanging_inbox_does_not_delay_the_sale(self) -> None:
        world = _World()
        world.notifier = NotificationEmitter(self._hanging_inbox(world.db), world.publisher, timeout_seconds=5.0)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        for _ in range(3):
            await world.offer_on(listing)

        output = await asyncio.wait_for(world.use_case().execute(_accept(listing, offer)), timeout=1.0)

        assert len(output.cancelled_offer_ids) == 3
        assert world.status_of(offer) == OfferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_announcement_is_bounded_by_one_timeout(self) -> None:
        world = _World()
        world.notifier = NotificationEmitter(self._hanging_inbox(world.db), world.publisher, timeout_seconds=0.05)
        listing = await world.listed_item()
        offer = await world.offer_on(listing)
        for _ in range(5):
            await world.offer_on(listing)
        use_case = world.use_case()
        output = await use_case.execute(_accept(listing, offer))

        await asyncio.wait_for(use_case.announce(output), timeout=0.5)

        assert world.db.notifications == {}
        assert sum(isinstance(e, ListingSoldEvent) for e in world.publisher.published) == 1
