from abc import ABC, abstractmethod
from uuid import UUID

from marketplace_core.domain.entities.listing import Listing
from marketplace_core.domain.enums.listing_availability import ListingAvailability


class ListingRegistry(ABC):
    """Port for reading listings and changing their availability."""

    @abstractmethod
    async def add(self, listing: Listing) -> None:
        ...

    @abstractmethod
    async def get_by_id(self, listing_id: UUID) -> Listing | None:
        ...

    @abstractmethod
    async def try_transition(
        self,
        listing_id: UUID,
        expected: ListingAvailability,
        next_state: ListingAvailability,
    ) -> bool:
        """
        Compare-and-swap on the stored availability.

        Applies next_state only if the stored value still equals expected and
        returns whether it did. Atomic with respect to concurrent callers and
        durable once it returns True.

        Raises InvalidStateTransitionError if expected → next_state is not an
        edge of the availability state machine, StorageUnavailableError if the
        store cannot be reached.
        """
        ...
