"""
Payment model created at checkout and settled by the gateway callback or
an admin "mark paid" action.
"""

import enum
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from partsflow.database.base import BaseModel

if TYPE_CHECKING:
    from partsflow.database.models.order import OrderRequest


class PaymentProvider(str, enum.Enum):
    P24 = "P24"
    MANUAL = "MANUAL"
    COD = "COD"


class PaymentStatus(str, enum.Enum):
    INIT = "INIT"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Payment(BaseModel):
    """Payment intent for an order; a SUCCEEDED row licenses the PAID status."""

    __tablename__ = "payments"

    order_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=False,
    )

    provider: Mapped[PaymentProvider] = mapped_column(
        SQLEnum(PaymentProvider, name="payment_provider", native_enum=False, length=20),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PLN")

    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status", native_enum=False, length=20),
        nullable=False,
        default=PaymentStatus.INIT,
    )

    provider_reference: Mapped[Optional[str]] = mapped_column(
        String(120),
        nullable=True,
        comment="Gateway transaction identifier",
    )

    raw_payload: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Last callback payload received from the gateway",
    )

    order: Mapped["OrderRequest"] = relationship("OrderRequest", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_order_status", "order_request_id", "status"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
    )

    @property
    def amount_minor_units(self) -> int:
        return int((self.amount * 100).to_integral_value())
