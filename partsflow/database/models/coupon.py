"""
Coupon model for checkout discounts.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from partsflow.database.base import BaseModel


class CouponType(str, enum.Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class Coupon(BaseModel):
    """
    Discount code applied at checkout.

    PERCENT coupons reduce the subtotal by ``value`` percent; FIXED coupons
    subtract ``value`` but never more than the subtotal.
    """

    __tablename__ = "coupons"

    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)

    type: Mapped[CouponType] = mapped_column(
        SQLEnum(CouponType, name="coupon_type", native_enum=False, length=20),
        nullable=False,
    )

    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("value >= 0", name="ck_coupons_value_non_negative"),
        CheckConstraint(
            "type <> 'PERCENT' OR value <= 100",
            name="ck_coupons_percent_range",
        ),
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count_non_negative"),
    )

    def is_redeemable(self, now: datetime) -> bool:
        if not self.active:
            return False
        if self.valid_from is not None and now < self.valid_from:
            return False
        if self.valid_until is not None and now > self.valid_until:
            return False
        if self.usage_limit is not None and self.usage_count >= self.usage_limit:
            return False
        return True
