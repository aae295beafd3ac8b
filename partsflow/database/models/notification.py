"""
In-app notification model.

Rows are created by the notification dispatcher and never change except for
``is_read``. The nullable unique ``idempotency_key`` lets the dispatcher drop
duplicate events with an insert that does nothing on conflict.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from partsflow.database.base import BaseModel


class NotificationType(str, enum.Enum):
    STATUS_CHANGED = "STATUS_CHANGED"
    OFFER_ADDED = "OFFER_ADDED"
    OFFER_UPDATED = "OFFER_UPDATED"
    COMMENT_ADDED = "COMMENT_ADDED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ORDER_REMOVED = "ORDER_REMOVED"
    ORDER_RESTORED = "ORDER_RESTORED"


class NotificationAudience(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    GUEST = "GUEST"

    @property
    def is_back_office(self) -> bool:
        return self in (NotificationAudience.ADMIN, NotificationAudience.STAFF)


class Notification(BaseModel):
    __tablename__ = "notifications"

    type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType, name="notification_type", native_enum=False, length=30),
        nullable=False,
    )

    audience: Mapped[NotificationAudience] = mapped_column(
        SQLEnum(
            NotificationAudience,
            name="notification_audience",
            native_enum=False,
            length=20,
        ),
        nullable=False,
    )

    order_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=True,
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        unique=True,
        comment="Deduplication key for the triggering event",
    )

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_order_audience", "order_request_id", "audience"),
        Index("ix_notifications_audience_created", "audience", "created_at"),
        {"comment": "In-app notifications"},
    )
