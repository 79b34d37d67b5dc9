"""
approval_kernel.services.notification_service -- In-app notifications.

Responsibility:
    ``DatabaseNotificationSink`` implements the NotificationSink protocol
    by writing ``notifications`` rows.  ``NotificationService`` serves a
    user's inbox: latest notifications, unread count, and read marking.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Failure modes:
    - DatabaseNotificationSink.enqueue raises NotificationDeliveryError when
      the insert fails.  Its own savepoint is rolled back first, so the
      caller's transaction is unaffected.  The WorkflowEngine logs and
      swallows this error.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import Notification, NotificationMessage
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import NotificationDeliveryError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.notification import NotificationModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.notification")


class DatabaseNotificationSink:
    """NotificationSink that stores each message as a notification row."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def enqueue(self, notification: NotificationMessage) -> None:
        model = NotificationModel(
            user_id=notification.recipient_id,
            notification_type=notification.notification_type.value,
            title=notification.title,
            message=notification.message,
            link=notification.link,
            is_read=False,
            created_at=self._clock.now(),
        )
        try:
            with self._session.begin_nested():
                self._session.add(model)
        except SQLAlchemyError as exc:
            raise NotificationDeliveryError(
                str(notification.recipient_id),
                notification.notification_type.value,
                str(exc),
            ) from exc

        logger.info(
            "notification_enqueued",
            extra={
                "notification_id": str(model.id),
                "recipient_id": str(notification.recipient_id),
                "notification_type": notification.notification_type.value,
            },
        )


class NotificationService(BaseService[NotificationModel]):
    """A user's notification inbox."""

    def list_for_user(
        self,
        user_id: UUID,
        limit: int = 10,
        unread_only: bool = False,
    ) -> list[Notification]:
        """Latest notifications first."""
        stmt = select(NotificationModel).where(
            NotificationModel.user_id == user_id,
            NotificationModel.is_deleted.is_(False),
        )
        if unread_only:
            stmt = stmt.where(NotificationModel.is_read.is_(False))
        stmt = stmt.order_by(NotificationModel.created_at.desc()).limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def unread_count(self, user_id: UUID) -> int:
        return self.session.execute(
            select(func.count(NotificationModel.id)).where(
                NotificationModel.user_id == user_id,
                NotificationModel.is_read.is_(False),
                NotificationModel.is_deleted.is_(False),
            )
        ).scalar_one()

    def mark_as_read(self, notification_id: UUID, user_id: UUID) -> bool:
        """Mark one of the user's notifications read.

        Returns False when the notification does not exist, belongs to
        another user, or was already read.
        """
        result = self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.user_id == user_id,
                NotificationModel.is_read.is_(False),
            )
            .values(is_read=True)
        )
        self.session.flush()
        return result.rowcount == 1

    def mark_all_as_read(self, user_id: UUID) -> int:
        """Mark every unread notification of the user read; returns the count."""
        result = self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.user_id == user_id,
                NotificationModel.is_read.is_(False),
                NotificationModel.is_deleted.is_(False),
            )
            .values(is_read=True)
        )
        self.session.flush()
        logger.info(
            "notifications_marked_read",
            extra={"user_id": str(user_id), "count": result.rowcount},
        )
        return result.rowcount
