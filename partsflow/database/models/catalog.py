"""
Catalog models: part categories and upsell products.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from partsflow.database.base import Base, BaseModel, TimestampMixin


class Category(Base, TimestampMixin):
    """Part category selected by the customer in the order wizard."""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(120), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    path: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Display path, e.g. 'Engine > Filters'",
    )


class UpsellItem(BaseModel):
    """Optional product offered next to the quoted parts at checkout."""

    __tablename__ = "upsell_items"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_upsell_items_active", "active"),
        CheckConstraint("price >= 0", name="ck_upsell_items_price_non_negative"),
    )
