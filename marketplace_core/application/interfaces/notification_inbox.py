from abc import ABC, abstractmethod
from uuid import UUID

from marketplace_core.domain.entities.notification import Notification


class NotificationInbox(ABC):
    """Port for the per-user notification inbox."""

    @abstractmethod
    async def add(self, notification: Notification) -> None:
        ...

    @abstractmethod
    async def add_many(self, notifications: list[Notification]) -> None:
        """Store a batch in one write; all or nothing."""
        ...

    @abstractmethod
    async def list_for_recipient(
        self, recipient_id: UUID, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        ...

    @abstractmethod
    async def mark_read(self, notification_id: UUID, recipient_id: UUID) -> bool:
        """Return False if no such notification belongs to the recipient."""
        ...
