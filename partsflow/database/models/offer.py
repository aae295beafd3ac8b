"""
Offer model: an admin-entered supplier quote for one order item.

Each offer occupies one of three numbered slots on its item. The unique
(order_item_id, slot) pair, together with the slot range check, keeps the
per-item cap in the database even if two writers race past the count check.
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from partsflow.database.base import BaseModel

if TYPE_CHECKING:
    from partsflow.database.models.order import OrderItem

MAX_OFFER_SLOTS = 3


class Offer(BaseModel):
    """
    Supplier quote for an order item.

    Attributes:
        manufacturer: Part manufacturer or brand
        unit_price: Price per piece
        quantity_available: Pieces the supplier confirmed
        version: Optimistic concurrency counter, bumped on every edit
        slot: Position 1..3 on the item
    """

    __tablename__ = "offers"

    order_item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
    )

    manufacturer: Mapped[str] = mapped_column(String(120), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Incremented on every edit",
    )

    slot: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Offer position on the item",
    )

    order_item: Mapped["OrderItem"] = relationship("OrderItem", back_populates="offers")

    __table_args__ = (
        UniqueConstraint("order_item_id", "slot", name="uq_offers_item_slot"),
        Index("ix_offers_order_item", "order_item_id"),
        CheckConstraint(
            f"slot >= 1 AND slot <= {MAX_OFFER_SLOTS}",
            name="ck_offers_slot_range",
        ),
        CheckConstraint("unit_price >= 0", name="ck_offers_unit_price_non_negative"),
        CheckConstraint(
            "quantity_available >= 0",
            name="ck_offers_quantity_available_non_negative",
        ),
        CheckConstraint("version >= 1", name="ck_offers_version_positive"),
        {"comment": "Supplier quotes, at most three per order item"},
    )
