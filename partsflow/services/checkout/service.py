"""
Checkout: draft selection, cart pricing and checkout submission.

The customer's selection draft is advisory. Every submission is validated
again on the server against the current offers, upsells and coupon before
anything is persisted. Submitting never changes the order status; the
payment callback (or staff) does that.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.config import Settings, get_settings
from partsflow.core.errors import (
    FieldError,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from partsflow.core.logging import get_logger
from partsflow.core.security import SessionClaims
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.order import (
    AddressKind,
    ChosenOffer,
    InvoiceDetails,
    OrderAddon,
    OrderAddress,
    OrderRequest,
    Shipment,
    ShippingMethod,
)
from partsflow.database.models.payment import Payment, PaymentProvider, PaymentStatus
from partsflow.services.identity.resolver import actor_role_label
from partsflow.services.orders.enums import OrderStatus
from partsflow.services.orders.repository import OrderRepository
from partsflow.services.orders.service import get_authorized_order
from partsflow.services.payments.repository import PaymentRepository
from partsflow.services.pricing.calculator import (
    CouponTerms,
    PriceBreakdown,
    SelectionEntry,
    build_addon_lines,
    build_lines,
    compute_total,
    select_offer,
    selections_from_draft,
    selections_to_draft,
    validate_checkout,
)
from partsflow.services.upsells.repository import UpsellRepository

logger = get_logger(__name__)

ADDONS_DRAFT_KEY = "_addons"
MAX_ADDON_QUANTITY = 99

SHIPPING_ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "phone",
    "email",
    "line1",
    "line2",
    "city",
    "postal_code",
    "country",
)


@dataclass(frozen=True)
class AddonRequest:
    upsell_item_id: uuid.UUID
    quantity: int = 1


@dataclass
class CheckoutSubmission:
    """
    Checkout payload with snake_case keys.

    ``selections`` and ``addons`` fall back to the saved draft when None.
    """

    shipping_address: Mapping[str, Any]
    invoice: Mapping[str, Any]
    agreements: Mapping[str, Any]
    shipping_method: Optional[str]
    payment_method: Optional[str]
    selections: Optional[dict[uuid.UUID, SelectionEntry]] = None
    addons: Optional[list[AddonRequest]] = None
    coupon_code: Optional[str] = None


@dataclass
class CheckoutResult:
    payment: Payment
    redirect_url: str
    breakdown: PriceBreakdown
    warnings: list[str] = field(default_factory=list)


def addons_from_draft(draft: Mapping[str, Any]) -> list[AddonRequest]:
    addons = []
    for entry in (draft or {}).get(ADDONS_DRAFT_KEY) or []:
        try:
            addons.append(
                AddonRequest(
                    upsell_item_id=uuid.UUID(str(entry["upsellItemId"])),
                    quantity=int(entry.get("quantity", 1)),
                )
            )
        except (KeyError, TypeError, ValueError):
            continue
    return addons


def addons_to_draft(addons: Sequence[AddonRequest]) -> list[dict[str, Any]]:
    return [
        {"upsellItemId": str(addon.upsell_item_id), "quantity": addon.quantity}
        for addon in addons
    ]


def _assign(target: Any, values: Mapping[str, Any]) -> None:
    for key, value in values.items():
        setattr(target, key, value)


class CheckoutService:
    """Customer-side selection, cart and checkout for one order."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.orders = OrderRepository(db)
        self.payments = PaymentRepository(db)
        self.upsells = UpsellRepository(db)

    async def _editable_order(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
    ):
        order, principal = await get_authorized_order(
            self.orders, claims, token, order_id, for_update=True
        )
        if not order.status.accepts_offers:
            raise InvalidTransition(
                f"Selection cannot change on a {order.status.value} order",
                current_status=order.status,
                order_id=str(order.id),
            )
        return order, principal

    async def update_selection(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
        item_id: uuid.UUID,
        offer_id: Optional[uuid.UUID],
    ) -> OrderRequest:
        """Point one item of the saved draft at ``offer_id``, or clear it."""
        order, _ = await self._editable_order(claims, token, order_id)

        item = order.find_item(item_id)
        if item is None:
            raise NotFound("Order item not found", resource="order_item", order_item_id=str(item_id))

        draft = order.selection_draft or {}
        selections = select_offer(selections_from_draft(draft), item, offer_id)
        order.selection_draft = {
            **selections_to_draft(selections),
            ADDONS_DRAFT_KEY: draft.get(ADDONS_DRAFT_KEY, []),
        }
        logger.info(
            "Selection draft updated",
            order_id=str(order.id),
            item_id=str(item_id),
            cleared=offer_id is None,
        )
        return order

    async def update_addons(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
        addons: Sequence[AddonRequest],
    ) -> OrderRequest:
        """Replace the addon part of the saved draft."""
        order, _ = await self._editable_order(claims, token, order_id)

        errors = await self._check_addons(addons)
        if errors:
            raise ValidationError("Invalid addon selection", errors=errors)

        order.selection_draft = {
            **(order.selection_draft or {}),
            ADDONS_DRAFT_KEY: addons_to_draft(addons),
        }
        logger.info("Addon draft updated", order_id=str(order.id), addons=len(addons))
        return order

    async def get_cart(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
        shipping_method: Optional[str] = None,
        coupon_code: Optional[str] = None,
    ) -> tuple[OrderRequest, PriceBreakdown]:
        """
        Price the saved draft.

        Addons that are no longer active are skipped with a warning. The
        shipping method is matched the same way checkout matches it.

        Raises:
            ValidationError: If the shipping method or coupon is not usable
        """
        order, _ = await get_authorized_order(self.orders, claims, token, order_id)
        draft = order.selection_draft or {}

        method = None
        if shipping_method:
            errors: list[FieldError] = []
            method = self._check_shipping_method(shipping_method, errors)
            if errors:
                raise ValidationError(errors[0].message, errors=errors)

        lines = build_lines(order.items, selections_from_draft(draft), require_stock=False)

        requested = addons_from_draft(draft)
        active = await self.upsells.get_active_by_ids(a.upsell_item_id for a in requested)
        addon_lines = build_addon_lines(
            (active[a.upsell_item_id], a.quantity)
            for a in requested
            if a.upsell_item_id in active
        )

        coupon = None
        if coupon_code:
            coupon, coupon_error = await self._coupon_terms(coupon_code)
            if coupon_error is not None:
                raise ValidationError(coupon_error.message, errors=[coupon_error])

        breakdown = compute_total(
            lines,
            addon_lines,
            method.value if method is not None else None,
            coupon,
            self.settings.shop,
        )
        breakdown.warnings.extend(
            f"Addon {a.upsell_item_id} is no longer available"
            for a in requested
            if a.upsell_item_id not in active
        )
        return order, breakdown

    async def submit_checkout(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
        submission: CheckoutSubmission,
    ) -> CheckoutResult:
        """
        Validate and persist a checkout, then open a payment.

        Raises:
            Unauthorized / NotFound: If the caller may not see the order
            InvalidTransition: If the order is not VALUATED
            ValidationError: With every field-level problem found
        """
        order, principal = await get_authorized_order(
            self.orders, claims, token, order_id, for_update=True
        )
        if order.status is not OrderStatus.VALUATED:
            raise InvalidTransition(
                "Order is not ready for checkout",
                current_status=order.status,
                order_id=str(order.id),
            )

        draft = order.selection_draft or {}
        selections = (
            submission.selections
            if submission.selections is not None
            else selections_from_draft(draft)
        )
        addons = submission.addons if submission.addons is not None else addons_from_draft(draft)

        errors = validate_checkout(
            selections,
            submission.shipping_address,
            submission.invoice,
            submission.agreements,
        )

        lines = []
        try:
            lines = build_lines(order.items, selections)
        except ValidationError as e:
            errors.extend(e.errors)

        shipping_method = self._check_shipping_method(submission.shipping_method, errors)
        provider = self._check_payment_method(submission.payment_method, errors)
        errors.extend(await self._check_addons(addons, field_prefix="selectedUpsells"))

        coupon = None
        if submission.coupon_code:
            coupon, coupon_error = await self._coupon_terms(submission.coupon_code)
            if coupon_error is not None:
                errors.append(coupon_error)

        if errors:
            logger.info(
                "Checkout rejected",
                order_id=str(order.id),
                fields=[e.field for e in errors],
            )
            raise ValidationError("Checkout is invalid", errors=errors)

        active = await self.upsells.get_active_by_ids(a.upsell_item_id for a in addons)
        addon_lines = build_addon_lines(
            (active[a.upsell_item_id], a.quantity) for a in addons
        )
        breakdown = compute_total(
            lines, addon_lines, shipping_method.value, coupon, self.settings.shop
        )

        self._persist_selection(order, lines)
        self._persist_details(order, submission, shipping_method, breakdown)
        order.addons = [
            OrderAddon(
                upsell_item_id=line.upsell_item_id,
                upsell_item=active[line.upsell_item_id],
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for line in addon_lines
        ]
        order.subtotal = breakdown.subtotal
        order.discount = breakdown.discount
        order.shipping_cost = breakdown.shipping_cost
        order.total_amount = breakdown.total
        order.coupon_code = breakdown.coupon_code
        order.terms_accepted_at = datetime.now(timezone.utc)
        order.selection_draft = {
            **selections_to_draft(selections),
            ADDONS_DRAFT_KEY: addons_to_draft(addons),
        }

        cancelled = await self.payments.cancel_pending(order.id)
        payment = await self.payments.add(
            Payment(
                order_request_id=order.id,
                provider=provider,
                amount=breakdown.total,
                currency=breakdown.currency,
                status=PaymentStatus.INIT,
            )
        )

        await self.orders.add_audit_entry(
            order.id,
            AuditAction.CHECKOUT_SUBMITTED,
            actor_id=getattr(principal, "actor_id", None),
            actor_role=actor_role_label(principal),
            payment_id=str(payment.id),
            provider=provider.value,
            total=str(breakdown.total),
            cancelled_payments=cancelled or None,
        )
        logger.info(
            "Checkout submitted",
            order_id=str(order.id),
            payment_id=str(payment.id),
            provider=provider.value,
            total=str(breakdown.total),
            lines=len(lines),
        )

        return CheckoutResult(
            payment=payment,
            redirect_url=self._redirect_url(order, payment, token),
            breakdown=breakdown,
            warnings=list(breakdown.warnings),
        )

    def _check_shipping_method(
        self, method: Optional[str], errors: list[FieldError]
    ) -> Optional[ShippingMethod]:
        if not method:
            errors.append(FieldError("shippingMethod", "Shipping method is required"))
            return None
        try:
            shipping_method = ShippingMethod(method.strip().upper())
        except ValueError:
            errors.append(FieldError("shippingMethod", f"Unsupported shipping method: {method}"))
            return None
        if shipping_method.value not in self.settings.shop.shipping_rates:
            errors.append(FieldError("shippingMethod", f"Unsupported shipping method: {method}"))
            return None
        return shipping_method

    def _check_payment_method(
        self, method: Optional[str], errors: list[FieldError]
    ) -> Optional[PaymentProvider]:
        if not method:
            errors.append(FieldError("paymentMethod", "Payment method is required"))
            return None
        try:
            provider = PaymentProvider(method.strip().upper())
        except ValueError:
            errors.append(FieldError("paymentMethod", f"Unknown payment method: {method}"))
            return None

        enabled = {
            PaymentProvider.P24: self.settings.payments.p24_enabled,
            PaymentProvider.MANUAL: self.settings.payments.manual_transfer_enabled,
            PaymentProvider.COD: self.settings.payments.cod_enabled,
        }
        if not enabled[provider]:
            errors.append(FieldError("paymentMethod", f"{provider.value} is not available"))
            return None
        return provider

    async def _check_addons(
        self,
        addons: Sequence[AddonRequest],
        field_prefix: str = "addons",
    ) -> list[FieldError]:
        errors = []
        active = await self.upsells.get_active_by_ids(a.upsell_item_id for a in addons)
        for index, addon in enumerate(addons):
            if addon.upsell_item_id not in active:
                errors.append(
                    FieldError(f"{field_prefix}[{index}].upsellItemId", "Upsell is not available")
                )
            if not 1 <= addon.quantity <= MAX_ADDON_QUANTITY:
                errors.append(
                    FieldError(
                        f"{field_prefix}[{index}].quantity",
                        f"Quantity must be between 1 and {MAX_ADDON_QUANTITY}",
                    )
                )
        return errors

    async def _coupon_terms(
        self, code: str
    ) -> tuple[Optional[CouponTerms], Optional[FieldError]]:
        if not self.settings.shop.coupons_enabled:
            return None, FieldError("couponCode", "Coupons are not accepted")
        coupon = await self.orders.get_coupon(code)
        if coupon is None or not coupon.is_redeemable(datetime.now(timezone.utc)):
            return None, FieldError("couponCode", "Coupon is invalid or expired")
        return CouponTerms(code=coupon.code, type=coupon.type, value=coupon.value), None

    @staticmethod
    def _persist_selection(order: OrderRequest, lines) -> None:
        """Chosen offers mirror the priced lines; excluded items lose theirs."""
        chosen = {line.item_id: line.offer_id for line in lines}
        for item in order.items:
            offer_id = chosen.get(item.id)
            if offer_id is None:
                item.chosen_offer = None
                continue
            offer = item.find_offer(offer_id)
            if item.chosen_offer is None:
                item.chosen_offer = ChosenOffer(offer_id=offer.id, offer=offer)
            elif item.chosen_offer.offer_id != offer.id:
                item.chosen_offer.offer = offer

    @staticmethod
    def _persist_details(
        order: OrderRequest,
        submission: CheckoutSubmission,
        shipping_method: ShippingMethod,
        breakdown: PriceBreakdown,
    ) -> None:
        address = {
            key: (submission.shipping_address.get(key) or None)
            for key in SHIPPING_ADDRESS_FIELDS
        }
        address["country"] = (address["country"] or "PL").strip().upper()
        if order.shipping_address is None:
            order.shipping_address = OrderAddress(kind=AddressKind.SHIPPING, **address)
        else:
            _assign(order.shipping_address, address)

        invoice = {
            "required": bool(submission.invoice.get("required")),
            "company_name": submission.invoice.get("company_name") or None,
            "tax_id": submission.invoice.get("tax_id") or None,
            "address": submission.invoice.get("address") or None,
        }
        if order.invoice_details is None:
            order.invoice_details = InvoiceDetails(**invoice)
        else:
            _assign(order.invoice_details, invoice)

        shipment = {"method": shipping_method, "price": breakdown.shipping_cost}
        if order.shipment is None:
            order.shipment = Shipment(**shipment)
        else:
            _assign(order.shipment, shipment)

    def _redirect_url(
        self,
        order: OrderRequest,
        payment: Payment,
        token: Optional[str],
    ) -> str:
        if payment.provider is PaymentProvider.P24:
            return f"{self.settings.payments.p24_gateway_url}?session={payment.id}"
        url = f"{self.settings.public_base_url}/orders/{order.id}"
        if token:
            url = f"{url}?token={token}"
        return url
