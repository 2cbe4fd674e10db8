from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_core.application.interfaces.notification_inbox import NotificationInbox
from marketplace_core.domain.entities.notification import Notification
from marketplace_core.domain.enums.notification_kind import NotificationKind
from marketplace_core.infrastructure.database.errors import storage_errors
from marketplace_core.infrastructure.database.models import NotificationModel


def _to_domain(model: NotificationModel) -> Notification:
    return Notification(
        id=model.id,
        recipient_id=model.recipient_id,
        kind=NotificationKind(model.kind),
        title=model.title,
        message=model.message,
        listing_id=model.listing_id,
        read=model.read,
        created_at=model.created_at,
    )


def _to_model(notification: Notification) -> NotificationModel:
    return NotificationModel(
        id=notification.id,
        recipient_id=notification.recipient_id,
        kind=notification.kind,
        title=notification.title,
        message=notification.message,
        listing_id=notification.listing_id,
        read=notification.read,
        created_at=notification.created_at,
    )


class SqlAlchemyNotificationInbox(NotificationInbox):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, notification: Notification) -> None:
        async with storage_errors(self._session, "notification.add"):
            self._session.add(_to_model(notification))
            await self._session.commit()

    async def add_many(self, notifications: list[Notification]) -> None:
        async with storage_errors(self._session, "notification.add_many"):
            self._session.add_all([_to_model(n) for n in notifications])
            await self._session.commit()

    async def list_for_recipient(
        self, recipient_id: UUID, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        query = select(NotificationModel).where(NotificationModel.recipient_id == recipient_id)
        if unread_only:
            query = query.where(NotificationModel.read.is_(False))
        query = query.order_by(NotificationModel.created_at.desc()).limit(limit)

        async with storage_errors(self._session, "notification.list_for_recipient"):
            result = await self._session.execute(query.execution_options(populate_existing=True))
            models = result.scalars().all()
        return [_to_domain(m) for m in models]

    async def mark_read(self, notification_id: UUID, recipient_id: UUID) -> bool:
        stmt = (
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.recipient_id == recipient_id,
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        async with storage_errors(self._session, "notification.mark_read"):
            result = await self._session.execute(stmt)
            await self._session.commit()
        return result.rowcount == 1
