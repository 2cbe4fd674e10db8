from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from marketplace_core.domain.enums.notification_kind import NotificationKind


class NotificationResponse(BaseModel):
    id: UUID
    recipient_id: UUID
    kind: NotificationKind
    title: str
    message: str
    listing_id: UUID | None = None
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
