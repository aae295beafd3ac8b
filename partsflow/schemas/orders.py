"""
Order request and response schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import Field, field_validator

from partsflow.database.models.order import OrderItem, OrderRequest
from partsflow.database.models.payment import PaymentProvider, PaymentStatus
from partsflow.schemas.common import CamelModel
from partsflow.services.orders.enums import ItemState, OrderStatus
from partsflow.services.pricing.calculator import effective_quantity, is_limited_stock


class OrderCreatedResponse(CamelModel):
    id: UUID
    short_code: str
    status: OrderStatus
    magic_link_url: Optional[str] = Field(
        None,
        description="Guest access link; shown once and never stored in clear text",
    )


class OfferResponse(CamelModel):
    id: UUID
    manufacturer: str
    unit_price: Decimal
    quantity_available: int
    notes: Optional[str] = None
    version: int
    slot: int
    effective_quantity: Optional[int] = None
    limited_stock: Optional[bool] = None


class OrderItemResponse(CamelModel):
    id: UUID
    category_id: str
    category_path: str
    quantity: int
    note: Optional[str] = None
    photo_url: Optional[str] = None
    state: ItemState
    offers: list[OfferResponse] = Field(default_factory=list)
    chosen_offer_id: Optional[UUID] = None

    @classmethod
    def from_item(cls, item: OrderItem) -> "OrderItemResponse":
        offers = [
            OfferResponse.model_validate(offer).model_copy(
                update={
                    "effective_quantity": effective_quantity(item.quantity, offer.quantity_available),
                    "limited_stock": is_limited_stock(item.quantity, offer.quantity_available),
                }
            )
            for offer in item.offers
        ]
        return cls(
            id=item.id,
            category_id=item.category_id,
            category_path=item.category_path,
            quantity=item.quantity,
            note=item.note,
            photo_url=item.photo_url,
            state=item.state,
            offers=offers,
            chosen_offer_id=item.chosen_offer.offer_id if item.chosen_offer else None,
        )


class ShippingAddressResponse(CamelModel):
    first_name: str
    last_name: str
    phone: str
    email: str
    line1: str
    line2: Optional[str] = None
    city: str
    postal_code: str
    country: str


class InvoiceDetailsResponse(CamelModel):
    required: bool
    company_name: Optional[str] = None
    tax_id: Optional[str] = None
    address: Optional[str] = None


class ShipmentResponse(CamelModel):
    method: str
    price: Decimal


class OrderAddonResponse(CamelModel):
    upsell_item_id: UUID
    title: Optional[str] = None
    quantity: int
    unit_price: Decimal


class PaymentResponse(CamelModel):
    id: UUID
    provider: PaymentProvider
    amount: Decimal
    currency: str
    status: PaymentStatus
    created_at: datetime


class OrderSummaryResponse(CamelModel):
    id: UUID
    short_code: str
    vin: str
    status: OrderStatus
    guest_email: Optional[str] = None
    user_id: Optional[UUID] = None
    total_amount: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime


class OrderDetailResponse(OrderSummaryResponse):
    status_version: int
    items: list[OrderItemResponse] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddressResponse] = None
    invoice_details: Optional[InvoiceDetailsResponse] = None
    shipment: Optional[ShipmentResponse] = None
    addons: list[OrderAddonResponse] = Field(default_factory=list)
    payments: list[PaymentResponse] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    subtotal: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    shipping_cost: Optional[Decimal] = None
    selection_draft: dict[str, Any] = Field(default_factory=dict)
    magic_link_expires_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: OrderRequest) -> "OrderDetailResponse":
        return cls(
            id=order.id,
            short_code=order.short_code,
            vin=order.vin,
            status=order.status,
            status_version=order.status_version,
            guest_email=order.guest_email,
            user_id=order.user_id,
            total_amount=order.total_amount,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[OrderItemResponse.from_item(item) for item in order.items],
            shipping_address=(
                ShippingAddressResponse.model_validate(order.shipping_address)
                if order.shipping_address
                else None
            ),
            invoice_details=(
                InvoiceDetailsResponse.model_validate(order.invoice_details)
                if order.invoice_details
                else None
            ),
            shipment=(
                ShipmentResponse(method=order.shipment.method.value, price=order.shipment.price)
                if order.shipment
                else None
            ),
            addons=[
                OrderAddonResponse(
                    upsell_item_id=addon.upsell_item_id,
                    title=addon.upsell_item.title if addon.upsell_item else None,
                    quantity=addon.quantity,
                    unit_price=addon.unit_price,
                )
                for addon in order.addons
            ],
            payments=[PaymentResponse.model_validate(p) for p in order.payments],
            coupon_code=order.coupon_code,
            subtotal=order.subtotal,
            discount=order.discount,
            shipping_cost=order.shipping_cost,
            selection_draft=order.selection_draft or {},
            magic_link_expires_at=order.magic_link_expires_at,
        )


class OrderListResponse(CamelModel):
    items: list[OrderSummaryResponse]
    total: int
    limit: int
    offset: int


class OrderStatusUpdateRequest(CamelModel):
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return OrderStatus.from_string(v)
        return v


class LinkGuestOrdersResponse(CamelModel):
    linked: int
