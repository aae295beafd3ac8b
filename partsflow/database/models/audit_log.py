"""
Audit trail of order actions, including status history.
"""

import enum
import uuid
from typing import Any, Optional

from sqlalchemy import Enum as SQLEnum, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from partsflow.database.base import BaseModel


class AuditAction(str, enum.Enum):
    ORDER_CREATED = "ORDER_CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    OFFER_ADDED = "OFFER_ADDED"
    OFFER_UPDATED = "OFFER_UPDATED"
    OFFER_DELETED = "OFFER_DELETED"
    CHECKOUT_SUBMITTED = "CHECKOUT_SUBMITTED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    COMMENT_ADDED = "COMMENT_ADDED"
    GUEST_ORDERS_LINKED = "GUEST_ORDERS_LINKED"


class AuditLog(BaseModel):
    __tablename__ = "audit_logs"

    order_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=True,
    )

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    actor_role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="USER, STAFF, ADMIN, GUEST or SYSTEM",
    )

    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, name="audit_action", native_enum=False, length=30),
        nullable=False,
    )

    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    details: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_audit_logs_order_created", "order_request_id", "created_at"),
        Index("ix_audit_logs_action", "action"),
    )
