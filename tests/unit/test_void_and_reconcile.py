"""Unit tests for competing-offer voiding and the reconciliation sweep."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest

from marketplace_core.application.coordinators.notification_emitter import NotificationEmitter
from marketplace_core.application.exceptions import StorageUnavailableError
from marketplace_core.application.use_cases.reconcile_sold_listings import ReconcileSoldListings
from marketplace_core.application.use_cases.void_competing_offers import VoidCompetingOffers
from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.entities.offer import Offer
from marketplace_core.domain.enums.listing_availability import ListingAvailability
from marketplace_core.domain.enums.notification_kind import NotificationKind
from marketplace_core.domain.enums.offer_status import OfferKind, OfferStatus
from marketplace_core.domain.events.domain_events import OfferCancelledEvent
from marketplace_core.infrastructure.messaging.noop_publisher import NoOpEventPublisher
from tests.support.in_memory_store import (
    InMemoryDatabase,
    InMemoryListingRegistry,
    InMemoryNotificationInbox,
    InMemoryOfferStore,
)


class _FlakyOfferStore(InMemoryOfferStore):
    """Fails the first ``failures`` cancellations with a storage error."""

    def __init__(self, db: InMemoryDatabase, failures: int) -> None:
        super().__init__(db)
        self.failures = failures
        self.cancel_calls = 0

    async def try_transition(self, offer_id, expected, next_state, *, at=None):  # type: ignore[no-untyped-def]
        if next_state is OfferStatus.CANCELLED:
            self.cancel_calls += 1
            if self.failures > 0:
                self.failures -= 1
                raise StorageUnavailableError("deadlock detected")
        return await super().try_transition(offer_id, expected, next_state, at=at)


async def _seed(
    db: InMemoryDatabase,
    *,
    availability: ListingAvailability = ListingAvailability.LISTED,
    offers: int = 3,
) -> tuple[Listing, list[Offer]]:
    listing = Listing.create(
        owner_id=uuid4(), title="Graphing calculator", price=Decimal("60"), availability=availability
    )
    db.listings[listing.id] = listing
    created = []
    for _ in range(offers):
        offer = Offer.create_for_listing(listing, buyer_id=uuid4(), kind=OfferKind.PURCHASE)
        offer.collect_events()
        db.offers[offer.id] = offer
        created.append(offer)
    return listing, created


def _voider(store: InMemoryOfferStore, attempts: int = 3) -> VoidCompetingOffers:
    return VoidCompetingOffers(store, max_attempts=attempts, backoff_base_seconds=0.0)


class TestVoidCompetingOffers:
    @pytest.mark.asyncio
    async def test_cancels_all_but_kept_offer(self) -> None:
        db = InMemoryDatabase()
        listing, (keep, *rest) = await _seed(db)

        output = await _voider(InMemoryOfferStore(db)).execute(listing.id, keep_offer_id=keep.id)

        assert output.converged is True
        assert output.attempts == 1
        assert db.offers[keep.id].status == OfferStatus.PENDING
        assert {o.id for o in output.cancelled} == {o.id for o in rest}
        assert all(db.offers[o.id].cancelled_at is not None for o in rest)

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self) -> None:
        db = InMemoryDatabase()
        listing, (keep, *_) = await _seed(db)
        voider = _voider(InMemoryOfferStore(db))

        await voider.execute(listing.id, keep_offer_id=keep.id)
        snapshot = {k: (v.status, v.cancelled_at) for k, v in db.offers.items()}
        again = await voider.execute(listing.id, keep_offer_id=keep.id)

        assert again.cancelled == []
        assert again.converged is True
        assert {k: (v.status, v.cancelled_at) for k, v in db.offers.items()} == snapshot

    @pytest.mark.asyncio
    async def test_offer_already_moved_is_skipped(self) -> None:
        db = InMemoryDatabase()
        listing, (keep, moved, other) = await _seed(db)
        store = InMemoryOfferStore(db)

        class _RacingStore(InMemoryOfferStore):
            async def list_for_listing(self, listing_id, *, status=None):  # type: ignore[no-untyped-def]
                snapshot = await super().list_for_listing(listing_id, status=status)
                # another actor cancels one offer after our snapshot
                await store.try_transition(moved.id, OfferStatus.PENDING, OfferStatus.CANCELLED)
                return snapshot

        output = await _voider(_RacingStore(db)).execute(listing.id, keep_offer_id=keep.id)

        assert [o.id for o in output.cancelled] == [other.id]
        assert output.converged is True

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self) -> None:
        db = InMemoryDatabase()
        listing, (keep, *rest) = await _seed(db)
        store = _FlakyOfferStore(db, failures=1)

        output = await _voider(store).execute(listing.id, keep_offer_id=keep.id)

        assert output.converged is True
        assert output.attempts == 2
        assert all(db.offers[o.id].status == OfferStatus.CANCELLED for o in rest)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        db = InMemoryDatabase()
        listing, (keep, stuck) = await _seed(db, offers=2)
        store = _FlakyOfferStore(db, failures=100)

        output = await _voider(store, attempts=3).execute(listing.id, keep_offer_id=keep.id)

        assert output.converged is False
        assert output.attempts == 3
        assert output.residual_offer_ids == [stuck.id]
        assert store.cancel_calls == 3

    @pytest.mark.asyncio
    async def test_backs_off_between_attempts(self) -> None:
        db = InMemoryDatabase()
        listing, (keep, _) = await _seed(db, offers=2)
        store = _FlakyOfferStore(db, failures=2)
        voider = VoidCompetingOffers(store, max_attempts=3, backoff_base_seconds=0.2, backoff_cap_seconds=1.0)

        with patch(
            "marketplace_core.application.use_cases.void_competing_offers.asyncio.sleep"
        ) as sleep:
            await voider.execute(listing.id, keep_offer_id=keep.id)

        # the in-memory store also awaits sleep(0) on every call
        delays = [call.args[0] for call in sleep.call_args_list if call.args[0] > 0]
        assert len(delays) == 2
        assert 0.2 <= delays[0] <= 0.27
        assert 0.4 <= delays[1] <= 0.54


class TestReconcileSoldListings:
    def _use_case(
        self,
        db: InMemoryDatabase,
        publisher: NoOpEventPublisher,
        *,
        registry: InMemoryListingRegistry | None = None,
        **kwargs: float,
    ) -> ReconcileSoldListings:
        store = InMemoryOfferStore(db)
        return ReconcileSoldListings(
            registry or InMemoryListingRegistry(db),
            store,
            NotificationEmitter(InMemoryNotificationInbox(db), publisher, timeout_seconds=1.0),
            publisher,
            voider=_voider(store),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_cancels_leftovers_on_sold_listing(self) -> None:
        db = InMemoryDatabase()
        listing, (winner, left_a, left_b) = await _seed(db, availability=ListingAvailability.SOLD)
        db.offers[winner.id].status = OfferStatus.COMPLETED
        publisher = NoOpEventPublisher()

        output = await self._use_case(db, publisher).execute()

        assert output.listings_checked == 1
        assert set(output.cancelled_offer_ids) == {left_a.id, left_b.id}
        assert output.unresolved_listing_ids == []
        assert db.offers[winner.id].status == OfferStatus.COMPLETED
        cancelled_events = [e for e in publisher.published if isinstance(e, OfferCancelledEvent)]
        assert {e.triggered_by for e in cancelled_events} == {"reconciliation_sweep"}
        kinds = {n.recipient_id: n.kind for n in db.notifications.values()}
        assert kinds == {left_a.buyer_id: NotificationKind.ITEM_SOLD, left_b.buyer_id: NotificationKind.ITEM_SOLD}

    @pytest.mark.asyncio
    async def test_ignores_listed_listings(self) -> None:
        db = InMemoryDatabase()
        await _seed(db, availability=ListingAvailability.LISTED)

        output = await self._use_case(db, NoOpEventPublisher()).execute()

        assert output.listings_checked == 0
        assert all(o.status == OfferStatus.PENDING for o in db.offers.values())

    @pytest.mark.asyncio
    async def test_recent_reservation_without_winner_is_left_alone(self) -> None:
        db = InMemoryDatabase()
        listing, offers = await _seed(db, availability=ListingAvailability.SOLD)

        output = await self._use_case(db, NoOpEventPublisher()).execute()

        assert output.unresolved_listing_ids == [listing.id]
        assert output.cancelled_offer_ids == []
        assert output.released_listing_ids == []
        assert db.listings[listing.id].availability == ListingAvailability.SOLD
        assert all(db.offers[o.id].status == OfferStatus.PENDING for o in offers)

    @pytest.mark.asyncio
    async def test_nothing_to_do_on_clean_store(self) -> None:
        db = InMemoryDatabase()
        listing, (winner, *rest) = await _seed(db, availability=ListingAvailability.SOLD)
        db.offers[winner.id].status = OfferStatus.COMPLETED
        for offer in rest:
            db.offers[offer.id].status = OfferStatus.CANCELLED

        output = await self._use_case(db, NoOpEventPublisher()).execute()

        assert output.listings_checked == 0
        assert db.notifications == {}

    @pytest.mark.asyncio
    async def test_stale_reservation_without_winner_is_released(self) -> None:
        db = InMemoryDatabase()
        listing, offers = await _seed(db, availability=ListingAvailability.SOLD)
        db.listings[listing.id].sold_at = datetime.now(timezone.utc) - timedelta(minutes=10)

        output = await self._use_case(db, NoOpEventPublisher(), reservation_grace_seconds=60).execute()

        assert output.released_listing_ids == [listing.id]
        assert output.unresolved_listing_ids == []
        assert db.listings[listing.id].availability == ListingAvailability.LISTED
        assert db.listings[listing.id].sold_at is None
        assert all(db.offers[o.id].status == OfferStatus.PENDING for o in offers)

    @pytest.mark.asyncio
    async def test_release_is_reverted_when_the_sale_lands_meanwhile(self) -> None:
        db = InMemoryDatabase()
        listing, (late, other) = await _seed(db, availability=ListingAvailability.SOLD, offers=2)
        db.listings[listing.id].sold_at = datetime.now(timezone.utc) - timedelta(minutes=10)

        class _LateCommit(InMemoryListingRegistry):
            async def try_transition(self, listing_id, expected, next_state):  # type: ignore[no-untyped-def]
                if expected is ListingAvailability.SOLD:
                    db.offers[late.id].status = OfferStatus.COMPLETED
                return await super().try_transition(listing_id, expected, next_state)

        output = await self._use_case(
            db, NoOpEventPublisher(), registry=_LateCommit(db), reservation_grace_seconds=60
        ).execute()

        assert output.released_listing_ids == []
        assert output.unresolved_listing_ids == [listing.id]
        assert db.listings[listing.id].availability == ListingAvailability.SOLD
        assert db.offers[other.id].status == OfferStatus.PENDING

    @pytest.mark.asyncio
    async def test_unresolved_listings_do_not_starve_later_ones(self) -> None:
        db = InMemoryDatabase()
        stuck, stuck_offers = await _seed(db, availability=ListingAvailability.SOLD, offers=2)
        sold, (winner, loser) = await _seed(db, availability=ListingAvailability.SOLD, offers=2)
        db.offers[winner.id].status = OfferStatus.COMPLETED

        output = await self._use_case(db, NoOpEventPublisher(), batch_size=2).execute()

        assert db.offers[loser.id].status == OfferStatus.CANCELLED
        assert output.cancelled_offer_ids == [loser.id]
        assert output.unresolved_listing_ids == [stuck.id]
        assert output.listings_checked == 2
        assert all(db.offers[o.id].status == OfferStatus.PENDING for o in stuck_offers)
