"""Per-user notification inbox."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lastmile.domain.entities import Session
from lastmile.domain.errors import NotFoundError
from lastmile.infrastructure.models import NotificationModel
from lastmile.infrastructure.repositories import NotificationRepository

from .lifecycle import DeliveryController


class NotificationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        controller: DeliveryController,
    ):
        self.session_factory = session_factory
        self.controller = controller

    async def inbox(
        self, session: Session, unread_only: bool = False
    ) -> list[NotificationModel]:
        async with self.session_factory() as db:
            actor = await self.controller.authenticate(db, session)
            return await NotificationRepository(db).list_for_user(
                actor.profile_id, unread_only
            )

    async def mark_read(self, session: Session, notification_id: int) -> None:
        async with self.session_factory() as db:
            actor = await self.controller.authenticate(db, session)
            if not await NotificationRepository(db).mark_read(
                notification_id, actor.profile_id
            ):
                raise NotFoundError(f"Notification {notification_id} not found")
            await db.commit()
