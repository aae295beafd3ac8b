"""
Customer-facing order endpoints.

Every order-scoped route accepts either a bearer session or the guest
``?token=`` magic link; access checks happen in the services.
"""

import re
from typing import Annotated, Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request, status
from starlette.datastructures import FormData

from partsflow.api.deps import (
    CheckoutServiceDep,
    CurrentPrincipal,
    DatabaseSession,
    MagicLinkToken,
    OptionalSessionClaims,
    OrderServiceDep,
    limiter,
)
from partsflow.core.config import get_settings
from partsflow.core.logging import get_logger
from partsflow.schemas.checkout import (
    AddonsUpdateRequest,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    PriceBreakdownResponse,
    SelectionDraftResponse,
    SelectionUpdateRequest,
)
from partsflow.schemas.orders import (
    LinkGuestOrdersResponse,
    OrderCreatedResponse,
    OrderDetailResponse,
)
from partsflow.services.orders.service import OrderItemInput

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/orders", tags=["orders"])

ITEM_FIELD_PATTERN = re.compile(r"^items\[(\d+)\]\[(\w+)\]$")


def _form_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def parse_order_items(form: FormData) -> list[OrderItemInput]:
    """
    Collect ``items[n][field]`` form fields into item inputs, ordered by n.

    A quantity that is not an integer is passed on as 0 so it is reported
    as a range error.
    """
    rows: dict[int, dict[str, Optional[str]]] = {}
    for key, value in form.multi_items():
        match = ITEM_FIELD_PATTERN.match(key)
        if match:
            rows.setdefault(int(match.group(1)), {})[match.group(2)] = _form_text(value)

    items = []
    for index in sorted(rows):
        row = rows[index]
        try:
            quantity = int((row.get("quantity") or "").strip())
        except ValueError:
            quantity = 0
        items.append(
            OrderItemInput(
                category_id=(row.get("categoryId") or "").strip(),
                quantity=quantity,
                note=(row.get("note") or "").strip() or None,
                photo_url=(row.get("photoUrl") or "").strip() or None,
            )
        )
    return items


@router.post(
    "",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a parts request",
)
@limiter.limit(settings.order_submission_rate_limit)
async def create_order(
    request: Request,
    principal: CurrentPrincipal,
    service: OrderServiceDep,
    db: DatabaseSession,
) -> OrderCreatedResponse:
    """
    Accepts multipart form fields ``vin``, ``email`` and
    ``items[n][categoryId|quantity|note|photoUrl]``.
    """
    form = await request.form()
    items = parse_order_items(form)

    created = await service.create_order(
        principal,
        vin=_form_text(form.get("vin")),
        email=_form_text(form.get("email")),
        items=items,
    )
    await db.commit()
    await service.dispatcher.send_pending()

    return OrderCreatedResponse(
        id=created.order.id,
        short_code=created.order.short_code,
        status=created.order.status,
        magic_link_url=created.magic_link_url,
    )


@router.post(
    "/link-guest",
    response_model=LinkGuestOrdersResponse,
    summary="Attach guest orders to the signed-in account",
)
async def link_guest_orders(
    principal: CurrentPrincipal,
    service: OrderServiceDep,
    db: DatabaseSession,
) -> LinkGuestOrdersResponse:
    linked = await service.link_guest_orders(principal)
    await db.commit()
    return LinkGuestOrdersResponse(linked=linked)


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order detail",
)
async def get_order(
    order_id: UUID,
    claims: OptionalSessionClaims,
    service: OrderServiceDep,
    token: MagicLinkToken = None,
) -> OrderDetailResponse:
    order, _ = await service.get_order_detail(claims, token, order_id)
    return OrderDetailResponse.from_order(order)


@router.put(
    "/{order_id}/selection",
    response_model=SelectionDraftResponse,
    summary="Choose or clear the offer for one item",
)
async def update_selection(
    order_id: UUID,
    body: SelectionUpdateRequest,
    claims: OptionalSessionClaims,
    service: CheckoutServiceDep,
    db: DatabaseSession,
    token: MagicLinkToken = None,
) -> SelectionDraftResponse:
    order = await service.update_selection(claims, token, order_id, body.item_id, body.offer_id)
    await db.commit()
    return SelectionDraftResponse(order_id=order.id, selection_draft=order.selection_draft)


@router.put(
    "/{order_id}/addons",
    response_model=SelectionDraftResponse,
    summary="Replace the selected upsells",
)
async def update_addons(
    order_id: UUID,
    body: AddonsUpdateRequest,
    claims: OptionalSessionClaims,
    service: CheckoutServiceDep,
    db: DatabaseSession,
    token: MagicLinkToken = None,
) -> SelectionDraftResponse:
    order = await service.update_addons(
        claims, token, order_id, [addon.to_request() for addon in body.addons]
    )
    await db.commit()
    return SelectionDraftResponse(order_id=order.id, selection_draft=order.selection_draft)


@router.get(
    "/{order_id}/cart",
    response_model=CartResponse,
    summary="Price the saved selection",
)
async def get_cart(
    order_id: UUID,
    claims: OptionalSessionClaims,
    service: CheckoutServiceDep,
    token: MagicLinkToken = None,
    shipping_method: Annotated[Optional[str], Query(alias="shippingMethod")] = None,
    coupon_code: Annotated[Optional[str], Query(alias="couponCode", max_length=40)] = None,
) -> CartResponse:
    order, breakdown = await service.get_cart(
        claims, token, order_id, shipping_method=shipping_method, coupon_code=coupon_code
    )
    return CartResponse(
        order_id=order.id,
        breakdown=PriceBreakdownResponse.from_breakdown(breakdown),
    )


@router.post(
    "/{order_id}/checkout",
    response_model=CheckoutResponse,
    summary="Submit checkout and open a payment",
)
async def submit_checkout(
    order_id: UUID,
    body: CheckoutRequest,
    claims: OptionalSessionClaims,
    service: CheckoutServiceDep,
    db: DatabaseSession,
    token: MagicLinkToken = None,
) -> CheckoutResponse:
    result = await service.submit_checkout(claims, token, order_id, body.to_submission())
    await db.commit()

    logger.info(
        "Checkout accepted",
        order_id=str(order_id),
        payment_id=str(result.payment.id),
    )
    return CheckoutResponse(
        payment_id=result.payment.id,
        redirect_url=result.redirect_url,
        totals=PriceBreakdownResponse.from_breakdown(result.breakdown),
    )
