"""
Append-only comment thread on an order.
"""

import uuid
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from partsflow.database.base import BaseModel
from partsflow.database.models.notification import NotificationAudience


class OrderComment(BaseModel):
    """
    A single comment on an order.

    ``author_role`` reuses the notification audience values so a guest
    comment is recorded as GUEST with no ``author_id``.
    """

    __tablename__ = "order_comments"

    order_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=False,
    )

    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    author_role: Mapped[NotificationAudience] = mapped_column(
        SQLEnum(
            NotificationAudience,
            name="comment_author_role",
            native_enum=False,
            length=20,
        ),
        nullable=False,
    )

    body: Mapped[str] = mapped_column(Text, nullable=False)

    is_internal: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Visible to staff only",
    )

    __table_args__ = (
        Index("ix_order_comments_order_created", "order_request_id", "created_at"),
        CheckConstraint(
            "char_length(body) >= 1 AND char_length(body) <= 2000",
            name="ck_order_comments_body_length",
        ),
    )
