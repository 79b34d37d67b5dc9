"""
Module: approval_kernel.models.notification
Responsibility: In-app notification rows written by DatabaseNotificationSink
    and read by NotificationService.

Architecture position: Kernel > Models.  May import from db/ only.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.approval import Notification


class NotificationModel(Base):
    """A notification addressed to one user."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read", "is_deleted"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Notification {self.notification_type} user={self.user_id} read={self.is_read}>"

    def to_dto(self) -> Notification:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import Notification as NotificationDTO
        from approval_kernel.domain.approval import NotificationType

        return NotificationDTO(
            notification_id=self.id,
            recipient_id=self.user_id,
            notification_type=NotificationType(self.notification_type),
            title=self.title,
            message=self.message,
            link=self.link,
            is_read=self.is_read,
            created_at=self.created_at,
        )
