"""
Database models package.

Every model is imported here so it is registered on Base.metadata before
relationships are configured or Alembic inspects the schema.
"""

from partsflow.database.base import Base, BaseModel
from partsflow.database.models.audit_log import AuditAction, AuditLog
from partsflow.database.models.catalog import Category, UpsellItem
from partsflow.database.models.comment import OrderComment
from partsflow.database.models.coupon import Coupon, CouponType
from partsflow.database.models.notification import (
    Notification,
    NotificationAudience,
    NotificationType,
)
from partsflow.database.models.offer import Offer
from partsflow.database.models.order import (
    AddressKind,
    ChosenOffer,
    InvoiceDetails,
    OrderAddon,
    OrderAddress,
    OrderItem,
    OrderRequest,
    Shipment,
    ShippingMethod,
)
from partsflow.database.models.payment import Payment, PaymentProvider, PaymentStatus
from partsflow.database.models.user import User, UserRole

__all__ = [
    "AddressKind",
    "AuditAction",
    "AuditLog",
    "Base",
    "BaseModel",
    "Category",
    "ChosenOffer",
    "Coupon",
    "CouponType",
    "InvoiceDetails",
    "Notification",
    "NotificationAudience",
    "NotificationType",
    "Offer",
    "OrderAddon",
    "OrderAddress",
    "OrderComment",
    "OrderItem",
    "OrderRequest",
    "Payment",
    "PaymentProvider",
    "PaymentStatus",
    "Shipment",
    "ShippingMethod",
    "User",
    "UserRole",
]
