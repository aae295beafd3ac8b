"""
Selection and pricing calculator.

Pure functions that turn a customer's offer selection into a priced cart
and decide whether a checkout payload is complete. Nothing here touches the
database; the checkout service feeds it loaded models and persists the
result.

Money is handled as Decimal and rounded half-up to cents.
"""

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence
from uuid import UUID

from partsflow.core.config import ShopConfig
from partsflow.core.errors import FieldError, ValidationError
from partsflow.database.models.coupon import CouponType

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PL_POSTAL_CODE_PATTERN = re.compile(r"^\d{2}-\d{3}$")
NIP_WEIGHTS = (6, 5, 7, 2, 3, 4, 5, 6, 7)

REQUIRED_SHIPPING_FIELDS = (
    ("first_name", "firstName"),
    ("last_name", "lastName"),
    ("email", "email"),
    ("phone", "phone"),
    ("line1", "line1"),
    ("city", "city"),
    ("postal_code", "postalCode"),
    ("country", "country"),
)


def money(value: Any) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SelectionEntry:
    offer_id: Optional[UUID]
    include: bool


@dataclass(frozen=True)
class CouponTerms:
    code: str
    type: CouponType
    value: Decimal


@dataclass(frozen=True)
class PricedLine:
    item_id: UUID
    offer_id: UUID
    manufacturer: str
    unit_price: Decimal
    requested_quantity: int
    effective_quantity: int
    limited_stock: bool
    line_total: Decimal


@dataclass(frozen=True)
class AddonLine:
    upsell_item_id: UUID
    title: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


@dataclass(frozen=True)
class PriceBreakdown:
    lines: list[PricedLine]
    addons: list[AddonLine]
    parts_subtotal: Decimal
    addons_subtotal: Decimal
    subtotal: Decimal
    discount: Decimal
    discounted_subtotal: Decimal
    shipping_method: Optional[str]
    shipping_cost: Decimal
    free_shipping: bool
    total: Decimal
    currency: str
    coupon_code: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def select_offer(
    selections: Mapping[UUID, SelectionEntry],
    item: Any,
    offer_id: Optional[UUID],
) -> dict[UUID, SelectionEntry]:
    """
    Return a new selection map with ``item`` pointing at ``offer_id``.

    A ``None`` offer clears the line so it is not purchased.

    Raises:
        ValidationError: If the offer does not belong to the item
    """
    updated = dict(selections)
    if offer_id is None:
        updated[item.id] = SelectionEntry(offer_id=None, include=False)
        return updated

    if not any(offer.id == offer_id for offer in item.offers):
        raise ValidationError.for_field(
            "offerId",
            "Offer does not belong to this item",
            item_id=str(item.id),
            offer_id=str(offer_id),
        )

    updated[item.id] = SelectionEntry(offer_id=offer_id, include=True)
    return updated


def selections_from_draft(draft: Mapping[str, Any]) -> dict[UUID, SelectionEntry]:
    """Parse the JSON draft stored on an order; malformed entries are skipped."""
    selections: dict[UUID, SelectionEntry] = {}
    for key, value in (draft or {}).items():
        if key.startswith("_") or not isinstance(value, Mapping):
            continue
        try:
            item_id = UUID(key)
            raw_offer = value.get("offerId")
            offer_id = UUID(raw_offer) if raw_offer else None
        except ValueError:
            continue
        include = bool(value.get("include")) and offer_id is not None
        selections[item_id] = SelectionEntry(offer_id=offer_id, include=include)
    return selections


def selections_to_draft(selections: Mapping[UUID, SelectionEntry]) -> dict[str, Any]:
    return {
        str(item_id): {
            "offerId": str(entry.offer_id) if entry.offer_id else None,
            "include": entry.include,
        }
        for item_id, entry in selections.items()
    }


def included_count(selections: Mapping[UUID, SelectionEntry]) -> int:
    return sum(1 for entry in selections.values() if entry.include and entry.offer_id)


# ---------------------------------------------------------------------------
# Quantity reconciliation
# ---------------------------------------------------------------------------


def effective_quantity(requested: int, available: int) -> int:
    """Billable quantity: never more than requested, never more than stocked."""
    return max(0, min(requested, available))


def is_limited_stock(requested: int, available: int) -> bool:
    return available < requested


def price_line(item: Any, offer: Any) -> PricedLine:
    quantity = effective_quantity(item.quantity, offer.quantity_available)
    unit_price = money(offer.unit_price)
    return PricedLine(
        item_id=item.id,
        offer_id=offer.id,
        manufacturer=offer.manufacturer,
        unit_price=unit_price,
        requested_quantity=item.quantity,
        effective_quantity=quantity,
        limited_stock=is_limited_stock(item.quantity, offer.quantity_available),
        line_total=money(unit_price * quantity),
    )


def build_lines(
    items: Iterable[Any],
    selections: Mapping[UUID, SelectionEntry],
    require_stock: bool = True,
) -> list[PricedLine]:
    """
    Price every included selection against the order's items.

    Args:
        items: The order's items with their offers loaded
        selections: Draft or submitted selections keyed by item id
        require_stock: Reject included offers with nothing in stock. The
            cart preview passes False so the zero-quantity line shows up
            with a limited-stock warning instead.

    Raises:
        ValidationError: If a selection references an unknown item, an
            offer that belongs to another item, or an offer that is out
            of stock
    """
    items_by_id = {item.id: item for item in items}
    lines: list[PricedLine] = []
    errors: list[FieldError] = []

    for item_id, entry in selections.items():
        if not entry.include:
            continue
        item = items_by_id.get(item_id)
        if item is None:
            errors.append(FieldError(f"selectedOffers.{item_id}", "Item does not belong to this order"))
            continue
        if entry.offer_id is None:
            errors.append(FieldError(f"selectedOffers.{item_id}", "An offer must be chosen for an included item"))
            continue
        offer = next((o for o in item.offers if o.id == entry.offer_id), None)
        if offer is None:
            errors.append(FieldError(f"selectedOffers.{item_id}", "Offer does not belong to this item"))
            continue
        line = price_line(item, offer)
        if require_stock and line.effective_quantity == 0:
            errors.append(FieldError(f"selectedOffers.{item_id}", "Offer is out of stock"))
            continue
        lines.append(line)

    if errors:
        raise ValidationError("Invalid offer selection", errors=errors)
    return lines


def build_addon_lines(addons: Iterable[tuple[Any, int]]) -> list[AddonLine]:
    """Price ``(upsell_item, quantity)`` pairs."""
    lines = []
    for upsell, quantity in addons:
        unit_price = money(upsell.price)
        lines.append(
            AddonLine(
                upsell_item_id=upsell.id,
                title=upsell.title,
                unit_price=unit_price,
                quantity=quantity,
                line_total=money(unit_price * quantity),
            )
        )
    return lines


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


def apply_coupon(subtotal: Decimal, coupon: Optional[CouponTerms]) -> tuple[Decimal, Decimal]:
    """Return ``(discount, discounted_subtotal)``; the result is never negative."""
    subtotal = money(subtotal)
    if coupon is None:
        return Decimal("0.00"), subtotal

    if coupon.type is CouponType.PERCENT:
        percent = min(max(Decimal(coupon.value), Decimal(0)), HUNDRED)
        discounted = money(subtotal * (1 - percent / HUNDRED))
    else:
        discounted = money(subtotal - min(Decimal(coupon.value), subtotal))

    return money(subtotal - discounted), discounted


def shipping_cost_for(
    shipping_method: Optional[str],
    discounted_subtotal: Decimal,
    shop: ShopConfig,
) -> tuple[Decimal, bool]:
    """
    Return ``(shipping_cost, free_shipping)``.

    Raises:
        ValidationError: If the method is not in the rate table
    """
    if shipping_method is None:
        return Decimal("0.00"), False

    method = getattr(shipping_method, "value", shipping_method)
    if method not in shop.shipping_rates:
        raise ValidationError.for_field(
            "shippingMethod",
            f"Unsupported shipping method: {method}",
        )

    if discounted_subtotal >= shop.free_shipping_threshold:
        return Decimal("0.00"), True
    return money(shop.shipping_rates[method]), False


def compute_total(
    lines: Sequence[PricedLine],
    addons: Sequence[AddonLine],
    shipping_method: Optional[str],
    coupon: Optional[CouponTerms],
    shop: ShopConfig,
) -> PriceBreakdown:
    """
    Compute the customer-visible total.

    subtotal = parts + addons; the coupon applies to the subtotal; shipping
    is free once the discounted subtotal reaches the shop threshold.
    """
    parts_subtotal = money(sum((line.line_total for line in lines), Decimal(0)))
    addons_subtotal = money(sum((addon.line_total for addon in addons), Decimal(0)))
    subtotal = money(parts_subtotal + addons_subtotal)

    discount, discounted_subtotal = apply_coupon(subtotal, coupon)
    shipping_cost, free_shipping = shipping_cost_for(
        shipping_method, discounted_subtotal, shop
    )

    warnings = [
        f"Limited stock for item {line.item_id}: {line.effective_quantity} of {line.requested_quantity}"
        for line in lines
        if line.limited_stock
    ]

    return PriceBreakdown(
        lines=list(lines),
        addons=list(addons),
        parts_subtotal=parts_subtotal,
        addons_subtotal=addons_subtotal,
        subtotal=subtotal,
        discount=discount,
        discounted_subtotal=discounted_subtotal,
        shipping_method=getattr(shipping_method, "value", shipping_method),
        shipping_cost=shipping_cost,
        free_shipping=free_shipping,
        total=money(discounted_subtotal + shipping_cost),
        currency=shop.currency,
        coupon_code=coupon.code if coupon else None,
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# Checkout readiness
# ---------------------------------------------------------------------------


def validate_nip(nip: str) -> bool:
    """Check a Polish NIP tax number (10 digits, mod-11 checksum)."""
    digits = re.sub(r"[\s-]", "", nip or "")
    if not re.fullmatch(r"\d{10}", digits):
        return False
    checksum = sum(int(d) * w for d, w in zip(digits[:9], NIP_WEIGHTS)) % 11
    return checksum == int(digits[9])


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_checkout(
    selections: Mapping[UUID, SelectionEntry],
    shipping_address: Optional[Mapping[str, Any]],
    invoice: Optional[Mapping[str, Any]],
    agreements: Optional[Mapping[str, Any]],
) -> list[FieldError]:
    """Collect every field-level reason the checkout cannot proceed."""
    errors: list[FieldError] = []

    if included_count(selections) == 0:
        errors.append(FieldError("selectedOffers", "Select at least one offer to check out"))

    address = shipping_address or {}
    for key, wire_name in REQUIRED_SHIPPING_FIELDS:
        if _blank(address.get(key)):
            errors.append(FieldError(f"shippingAddress.{wire_name}", "This field is required"))

    email = address.get("email")
    if not _blank(email) and not EMAIL_PATTERN.match(email.strip()):
        errors.append(FieldError("shippingAddress.email", "Invalid email address"))

    postal_code = address.get("postal_code")
    country = (address.get("country") or "").strip().upper()
    if country == "PL" and not _blank(postal_code):
        if not PL_POSTAL_CODE_PATTERN.match(postal_code.strip()):
            errors.append(FieldError("shippingAddress.postalCode", "Postal code must match NN-NNN"))

    invoice = invoice or {}
    if invoice.get("required"):
        if _blank(invoice.get("company_name")):
            errors.append(FieldError("invoiceDetails.companyName", "Company name is required for an invoice"))
        tax_id = invoice.get("tax_id")
        if _blank(tax_id):
            errors.append(FieldError("invoiceDetails.taxId", "Tax ID is required for an invoice"))
        elif not validate_nip(tax_id):
            errors.append(FieldError("invoiceDetails.taxId", "Invalid tax ID"))

    agreements = agreements or {}
    if not agreements.get("terms"):
        errors.append(FieldError("agreements.terms", "Terms must be accepted"))
    if not agreements.get("privacy"):
        errors.append(FieldError("agreements.privacy", "Privacy policy must be accepted"))

    return errors


def can_checkout(
    selections: Mapping[UUID, SelectionEntry],
    shipping_address: Optional[Mapping[str, Any]],
    invoice: Optional[Mapping[str, Any]],
    agreements: Optional[Mapping[str, Any]],
) -> bool:
    return not validate_checkout(selections, shipping_address, invoice, agreements)
