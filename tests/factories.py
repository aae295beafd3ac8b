"""
Lightweight stand-ins for orders, items and offers.

The pricing and access-control code only reads attributes, so plain
namespaces are enough and keep these tests free of a database.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Optional
from uuid import UUID, uuid4

from partsflow.database.models import ChosenOffer, OrderItem, OrderRequest
from partsflow.services.orders.enums import ItemState, OrderStatus


def make_offer(
    unit_price: str = "10.00",
    quantity_available: int = 5,
    manufacturer: str = "Bosch",
    slot: int = 1,
    version: int = 1,
    item_id: Optional[UUID] = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid4(),
        order_item_id=item_id or uuid4(),
        manufacturer=manufacturer,
        unit_price=Decimal(unit_price),
        quantity_available=quantity_available,
        notes=None,
        slot=slot,
        version=version,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def make_item(
    quantity: int = 1,
    offers: Optional[list] = None,
    state: ItemState = ItemState.REQUESTED,
    category_id: str = "brakes-pads",
) -> SimpleNamespace:
    item = SimpleNamespace(
        id=uuid4(),
        order_request_id=uuid4(),
        category_id=category_id,
        category_path="Brakes / Pads",
        quantity=quantity,
        note=None,
        photo_url=None,
        state=state,
        offers=offers or [],
        chosen_offer=None,
        created_at=datetime.now(timezone.utc),
    )
    for offer in item.offers:
        offer.order_item_id = item.id
    return item


def make_order(
    status: OrderStatus = OrderStatus.PENDING,
    items: Optional[list] = None,
    user_id: Optional[UUID] = None,
    guest_email: Optional[str] = "guest@example.com",
    magic_link_hash: Optional[str] = None,
    magic_link_expires_at: Optional[datetime] = None,
    selection_draft: Optional[dict] = None,
) -> SimpleNamespace:
    now = datetime.now(timezone.utc)
    order = SimpleNamespace(
        id=uuid4(),
        short_code="AB12CD34",
        vin="WVWZZZ1JZXW000001",
        guest_email=guest_email,
        user_id=user_id,
        user=None,
        status=status,
        status_version=0,
        magic_link_hash=magic_link_hash,
        magic_link_expires_at=magic_link_expires_at or now + timedelta(days=30),
        selection_draft=selection_draft if selection_draft is not None else {},
        coupon_code=None,
        subtotal=None,
        discount=None,
        shipping_cost=None,
        total_amount=None,
        terms_accepted_at=None,
        items=items or [],
        shipping_address=None,
        invoice_details=None,
        shipment=None,
        addons=[],
        payments=[],
        created_at=now,
        updated_at=now,
    )
    for item in order.items:
        item.order_request_id = order.id
    return order


def build_order(
    status: OrderStatus = OrderStatus.PENDING,
    items: Optional[list] = None,
    total_amount: Optional[Decimal] = None,
    coupon_code: Optional[str] = None,
    user_id: Optional[UUID] = None,
    guest_email: Optional[str] = "guest@example.com",
):
    """Transient OrderRequest model for code that writes committed attributes."""
    now = datetime.now(timezone.utc)
    return OrderRequest(
        id=uuid4(),
        short_code="ZX81QW42",
        vin="WVWZZZ1JZXW000001",
        guest_email=guest_email,
        user_id=user_id,
        status=status,
        status_version=0,
        selection_draft={},
        total_amount=total_amount,
        coupon_code=coupon_code,
        items=items or [],
        created_at=now,
        updated_at=now,
    )


def build_item(state: ItemState = ItemState.REQUESTED, quantity: int = 1, chosen: bool = False):
    item = OrderItem(
        id=uuid4(),
        category_id="brakes-pads",
        category_path="Brakes / Pads",
        quantity=quantity,
        state=state,
        offers=[],
        created_at=datetime.now(timezone.utc),
    )
    item.chosen_offer = ChosenOffer(id=uuid4(), order_item_id=item.id, offer_id=uuid4()) if chosen else None
    return item
