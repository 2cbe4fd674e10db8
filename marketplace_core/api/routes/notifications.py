from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from marketplace_core.api.dependencies import get_current_user_id, get_notification_inbox
from marketplace_core.api.schemas.notification_schemas import (
    NotificationListResponse,
    NotificationResponse,
)
from marketplace_core.application.exceptions import NotificationNotFoundError
from marketplace_core.application.interfaces.notification_inbox import NotificationInbox

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: UUID = Depends(get_current_user_id),
    inbox: NotificationInbox = Depends(get_notification_inbox),
) -> NotificationListResponse:
    notifications = await inbox.list_for_recipient(user_id, unread_only=unread_only, limit=limit)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications]
    )


@router.post("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_notification_read(
    notification_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    inbox: NotificationInbox = Depends(get_notification_inbox),
) -> Response:
    if not await inbox.mark_read(notification_id, user_id):
        raise NotificationNotFoundError(notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
