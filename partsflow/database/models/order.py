"""
Order aggregate models.

An OrderRequest is one customer submission tied to a VIN. It owns its
requested part lines (OrderItem) and, once the customer checks out, the
chosen offers, shipping address, invoice details, shipment and addons.
Orders are never hard-deleted; REMOVED is a status.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from partsflow.database.base import BaseModel
from partsflow.services.orders.enums import ItemState, OrderStatus

if TYPE_CHECKING:
    from partsflow.database.models.catalog import UpsellItem
    from partsflow.database.models.offer import Offer
    from partsflow.database.models.payment import Payment
    from partsflow.database.models.user import User


class ShippingMethod(str, enum.Enum):
    """Carrier options priced from the shop rate table."""

    INPOST_LOCKER = "INPOST_LOCKER"
    INPOST_COURIER = "INPOST_COURIER"
    DPD = "DPD"
    DHL = "DHL"


class AddressKind(str, enum.Enum):
    SHIPPING = "SHIPPING"


class OrderRequest(BaseModel):
    """
    Customer parts request.

    Attributes:
        short_code: Human-friendly unique reference shown to customers
        vin: Normalized 17-character vehicle identification number
        guest_email: Contact email given at submission; kept after linking
        user_id: Owning account, when submitted or linked while logged in
        status: Lifecycle status, changed only through the state machine
        status_version: Incremented on every status transition
        magic_link_hash: SHA-256 of the guest access token
        selection_draft: Customer's advisory offer and addon selection
    """

    __tablename__ = "order_requests"

    short_code: Mapped[str] = mapped_column(
        String(8),
        unique=True,
        nullable=False,
        comment="Human-friendly order reference",
    )

    vin: Mapped[str] = mapped_column(
        String(17),
        nullable=False,
        comment="Uppercase VIN without I, O or Q",
    )

    guest_email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Contact email for guest submissions",
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Owning user account",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", native_enum=False, length=20),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="Order lifecycle status",
    )

    status_version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of status transitions applied",
    )

    magic_link_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA-256 digest of the guest access token",
    )

    magic_link_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    selection_draft: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Advisory offer and addon selection saved by the customer",
    )

    coupon_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    subtotal: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    shipping_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Total computed at the last checkout submission",
    )

    terms_accepted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    user: Mapped[Optional["User"]] = relationship("User", lazy="selectin")

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )

    shipping_address: Mapped[Optional["OrderAddress"]] = relationship(
        "OrderAddress",
        lazy="selectin",
        uselist=False,
        cascade="all, delete-orphan",
    )

    invoice_details: Mapped[Optional["InvoiceDetails"]] = relationship(
        "InvoiceDetails",
        lazy="selectin",
        uselist=False,
        cascade="all, delete-orphan",
    )

    shipment: Mapped[Optional["Shipment"]] = relationship(
        "Shipment",
        lazy="selectin",
        uselist=False,
        cascade="all, delete-orphan",
    )

    addons: Mapped[list["OrderAddon"]] = relationship(
        "OrderAddon",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="order",
        lazy="selectin",
        order_by="Payment.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_order_requests_status_created", "status", "created_at"),
        Index("ix_order_requests_user", "user_id"),
        Index("ix_order_requests_guest_email", "guest_email"),
        CheckConstraint("char_length(vin) = 17", name="ck_order_requests_vin_length"),
        CheckConstraint(
            "total_amount IS NULL OR total_amount >= 0",
            name="ck_order_requests_total_non_negative",
        ),
        {"comment": "Customer parts requests"},
    )

    @property
    def contact_email(self) -> Optional[str]:
        """Owning user's email, falling back to the guest email."""
        if self.user is not None and self.user.email:
            return self.user.email
        return self.guest_email

    def find_item(self, item_id: uuid.UUID) -> Optional["OrderItem"]:
        return next((item for item in self.items if item.id == item_id), None)


class OrderItem(BaseModel):
    """One requested part line within an order."""

    __tablename__ = "order_items"

    order_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=False,
    )

    category_id: Mapped[str] = mapped_column(
        ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=False,
    )

    category_path: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="Category path denormalized at submission time",
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Quantity requested by the customer",
    )

    note: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    state: Mapped[ItemState] = mapped_column(
        SQLEnum(ItemState, name="item_state", native_enum=False, length=20),
        nullable=False,
        default=ItemState.REQUESTED,
    )

    order: Mapped["OrderRequest"] = relationship("OrderRequest", back_populates="items")

    offers: Mapped[list["Offer"]] = relationship(
        "Offer",
        back_populates="order_item",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Offer.slot",
    )

    chosen_offer: Mapped[Optional["ChosenOffer"]] = relationship(
        "ChosenOffer",
        lazy="selectin",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_order_items_order", "order_request_id"),
        CheckConstraint(
            "quantity >= 1 AND quantity <= 999",
            name="ck_order_items_quantity_range",
        ),
        {"comment": "Requested part lines"},
    )

    def find_offer(self, offer_id: uuid.UUID) -> Optional["Offer"]:
        return next((offer for offer in self.offers if offer.id == offer_id), None)


class ChosenOffer(BaseModel):
    """Offer the customer bought for an item, written at checkout."""

    __tablename__ = "chosen_offers"

    order_item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    offer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("offers.id", ondelete="CASCADE"),
        nullable=False,
    )

    offer: Mapped["Offer"] = relationship("Offer", lazy="selectin")


class OrderAddress(BaseModel):
    __tablename__ = "order_addresses"

    order_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=False,
    )

    kind: Mapped[AddressKind] = mapped_column(
        SQLEnum(AddressKind, name="address_kind", native_enum=False, length=20),
        nullable=False,
        default=AddressKind.SHIPPING,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str] = mapped_column(String(40), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    line1: Mapped[str] = mapped_column(String(200), nullable=False)
    line2: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(2), nullable=False, default="PL")

    __table_args__ = (
        UniqueConstraint("order_request_id", "kind", name="uq_order_addresses_order_kind"),
    )


class InvoiceDetails(BaseModel):
    __tablename__ = "invoice_details"

    order_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    tax_id: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="Polish NIP, digits only",
    )
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)


class Shipment(BaseModel):
    __tablename__ = "shipments"

    order_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    method: Mapped[ShippingMethod] = mapped_column(
        SQLEnum(ShippingMethod, name="shipping_method", native_enum=False, length=30),
        nullable=False,
    )

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_shipments_price_non_negative"),
    )


class OrderAddon(BaseModel):
    """Upsell product added to an order at checkout."""

    __tablename__ = "order_addons"

    order_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("order_requests.id", ondelete="CASCADE"),
        nullable=False,
    )

    upsell_item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("upsell_items.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Upsell price at checkout time",
    )

    upsell_item: Mapped["UpsellItem"] = relationship("UpsellItem", lazy="selectin")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_addons_quantity_positive"),
    )
