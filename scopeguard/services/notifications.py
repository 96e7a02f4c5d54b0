from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from scopeguard.db.base import utcnow
from scopeguard.errors import NotFound
from scopeguard.models.workflow import Notification


class NotificationService:
    """A user's own in-app notifications. No role checks: users only see their own rows."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_for_user(self, user_id: int, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return list(self.db.scalars(stmt).all())

    def unread_count(self, user_id: int) -> int:
        return self.db.scalar(
            select(func.count(Notification.id)).where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        notification = self.db.scalars(
            select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
        ).first()
        if notification is None:
            raise NotFound("Notification not found")
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            self.db.commit()
            self.db.refresh(notification)
        return notification

    def mark_all_read(self, user_id: int) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount
