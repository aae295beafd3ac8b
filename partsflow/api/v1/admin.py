"""
Back-office endpoints: order list, status changes and offers.

All routes require a STAFF or ADMIN session.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from partsflow.api.deps import (
    DatabaseSession,
    OffersServiceDep,
    OrderServiceDep,
    StaffPrincipal,
)
from partsflow.core.errors import ValidationError
from partsflow.core.logging import get_logger
from partsflow.schemas.offers import (
    OfferCreateRequest,
    OfferDeletedResponse,
    OfferUpdateRequest,
)
from partsflow.schemas.orders import (
    OfferResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderStatusUpdateRequest,
    OrderSummaryResponse,
)
from partsflow.services.orders.enums import OrderStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/orders",
    response_model=OrderListResponse,
    summary="List orders for the back office",
)
async def list_orders(
    staff: StaffPrincipal,
    service: OrderServiceDep,
    status_filter: Annotated[Optional[str], Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> OrderListResponse:
    order_status = None
    if status_filter:
        try:
            order_status = OrderStatus.from_string(status_filter)
        except ValueError as e:
            raise ValidationError.for_field("status", str(e)) from e

    orders, total = await service.list_orders(staff, order_status, limit=limit, offset=offset)
    return OrderListResponse(
        items=[OrderSummaryResponse.model_validate(o) for o in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.patch(
    "/orders/{order_id}/status",
    response_model=OrderDetailResponse,
    summary="Change order status",
)
async def change_order_status(
    order_id: UUID,
    body: OrderStatusUpdateRequest,
    staff: StaffPrincipal,
    service: OrderServiceDep,
    db: DatabaseSession,
) -> OrderDetailResponse:
    order = await service.change_status(staff, order_id, body.status, reason=body.reason)
    await db.commit()
    await service.dispatcher.send_pending()

    await db.refresh(order)
    return OrderDetailResponse.from_order(order)


@router.post(
    "/offers",
    response_model=OfferResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an offer to an order item",
)
async def add_offer(
    body: OfferCreateRequest,
    staff: StaffPrincipal,
    service: OffersServiceDep,
    db: DatabaseSession,
) -> OfferResponse:
    offer = await service.add_offer(
        staff,
        body.order_item_id,
        manufacturer=body.manufacturer,
        unit_price=body.unit_price,
        quantity_available=body.quantity_available,
        notes=body.notes,
    )
    await db.commit()
    await service.dispatcher.send_pending()
    return OfferResponse.model_validate(offer)


@router.put(
    "/offers",
    response_model=OfferResponse,
    summary="Edit an offer with a version check",
)
async def edit_offer(
    body: OfferUpdateRequest,
    staff: StaffPrincipal,
    service: OffersServiceDep,
    db: DatabaseSession,
) -> OfferResponse:
    offer = await service.edit_offer(
        staff,
        body.offer_id,
        expected_version=body.version,
        manufacturer=body.manufacturer,
        unit_price=body.unit_price,
        quantity_available=body.quantity_available,
        notes=body.notes,
    )
    await db.commit()
    await service.dispatcher.send_pending()
    return OfferResponse.model_validate(offer)


@router.delete(
    "/offers",
    response_model=OfferDeletedResponse,
    summary="Delete an offer",
)
async def delete_offer(
    staff: StaffPrincipal,
    service: OffersServiceDep,
    db: DatabaseSession,
    offer_id: Annotated[UUID, Query(alias="offerId")],
) -> OfferDeletedResponse:
    await service.delete_offer(staff, offer_id)
    await db.commit()
    return OfferDeletedResponse(offer_id=offer_id)
