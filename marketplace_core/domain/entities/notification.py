from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID, uuid4

from marketplace_core.domain.enums.notification_kind import NotificationKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Notification:
    """Inbox entry for a user. Delivery is best-effort."""

    recipient_id: UUID
    kind: NotificationKind
    title: str
    message: str
    listing_id: UUID | None = None
    read: bool = False
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utcnow)
