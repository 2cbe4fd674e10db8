from abc import ABC, abstractmethod
from uuid import UUID

from marketplace_core.domain.entities.rating import Rating


class RatingRepository(ABC):
    """Port for persisting and querying ratings."""

    @abstractmethod
    async def add(self, rating: Rating) -> None:
        """Persist a rating; raises DuplicateRatingError if (offer, rater) already exists."""
        ...

    @abstractmethod
    async def exists(self, offer_id: UUID, rater_id: UUID) -> bool:
        ...

    @abstractmethod
    async def list_for_rated_user(self, user_id: UUID) -> list[Rating]:
        ...
