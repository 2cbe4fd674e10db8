from enum import Enum
from typing import ClassVar

from marketplace_core.domain.enums.listing_availability import ListingAvailability
from marketplace_core.domain.enums.offer_status import OfferStatus


# Mapping of valid transitions: from_state -> set of allowed to_states
LISTING_TRANSITIONS: dict[ListingAvailability, frozenset[ListingAvailability]] = {
    ListingAvailability.PENDING_REVIEW: frozenset(
        {ListingAvailability.LISTED, ListingAvailability.REJECTED}
    ),
    ListingAvailability.LISTED: frozenset({ListingAvailability.SOLD, ListingAvailability.REJECTED}),
    # Only used to release a reservation whose offer could not be committed
    ListingAvailability.SOLD: frozenset({ListingAvailability.LISTED}),
    ListingAvailability.REJECTED: frozenset(),
}

OFFER_TRANSITIONS: dict[OfferStatus, frozenset[OfferStatus]] = {
    OfferStatus.PENDING: frozenset({OfferStatus.COMPLETED, OfferStatus.CANCELLED}),
    # Terminal states, no outgoing transitions
    OfferStatus.COMPLETED: frozenset(),
    OfferStatus.CANCELLED: frozenset(),
}


class InvalidStateTransitionError(Exception):
    """Raised when a transition is not an edge of the state machine."""

    def __init__(self, from_state: Enum, to_state: Enum, allowed: frozenset[Enum]) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition from {from_state.value} to {to_state.value}. "
            f"Allowed transitions: {sorted(s.value for s in allowed)}"
        )


class _TransitionTable:
    transitions: ClassVar[dict]  # type: ignore[type-arg]

    def can_transition(self, from_state: Enum, to_state: Enum) -> bool:
        """Return True if transitioning from_state → to_state is permitted."""
        return to_state in self.transitions.get(from_state, frozenset())

    def validate_transition(self, from_state: Enum, to_state: Enum) -> None:
        """Raise InvalidStateTransitionError if the transition is not permitted."""
        if not self.can_transition(from_state, to_state):
            raise InvalidStateTransitionError(
                from_state, to_state, self.get_allowed_transitions(from_state)
            )

    def get_allowed_transitions(self, from_state: Enum) -> frozenset:  # type: ignore[type-arg]
        """Return the set of states reachable from from_state."""
        return self.transitions.get(from_state, frozenset())


class ListingAvailabilityMachine(_TransitionTable):
    """
    Listing availability rules. Stateless: the stored availability is only ever
    changed through the registry's conditional transition.
    """

    transitions = LISTING_TRANSITIONS


class OfferStatusMachine(_TransitionTable):
    """Offer status rules: pending offers end either completed or cancelled."""

    transitions = OFFER_TRANSITIONS

    def can_transition(self, from_state: Enum, to_state: Enum) -> bool:
        if isinstance(from_state, OfferStatus) and from_state.is_terminal:
            return False
        return super().can_transition(from_state, to_state)


listing_machine = ListingAvailabilityMachine()
offer_machine = OfferStatusMachine()
