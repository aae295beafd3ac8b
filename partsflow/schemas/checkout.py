"""
Selection draft, cart and checkout schemas.

Checkout input fields are optional at the schema level so that missing
values come back as field errors from the checkout validator rather than
as a bare 422.
"""

from dataclasses import asdict
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import Field

from partsflow.schemas.common import CamelModel
from partsflow.services.checkout.service import (
    AddonRequest,
    CheckoutSubmission,
)
from partsflow.services.pricing.calculator import PriceBreakdown, SelectionEntry


class SelectionUpdateRequest(CamelModel):
    item_id: UUID
    offer_id: Optional[UUID] = None


class AddonSelection(CamelModel):
    upsell_item_id: UUID
    quantity: int = 1

    def to_request(self) -> AddonRequest:
        return AddonRequest(upsell_item_id=self.upsell_item_id, quantity=self.quantity)


class AddonsUpdateRequest(CamelModel):
    addons: list[AddonSelection] = Field(default_factory=list)


class SelectionDraftResponse(CamelModel):
    order_id: UUID
    selection_draft: dict[str, Any]


class PricedLineResponse(CamelModel):
    item_id: UUID
    offer_id: UUID
    manufacturer: str
    unit_price: Decimal
    requested_quantity: int
    effective_quantity: int
    limited_stock: bool
    line_total: Decimal


class AddonLineResponse(CamelModel):
    upsell_item_id: UUID
    title: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class PriceBreakdownResponse(CamelModel):
    lines: list[PricedLineResponse]
    addons: list[AddonLineResponse]
    parts_subtotal: Decimal
    addons_subtotal: Decimal
    subtotal: Decimal
    discount: Decimal
    discounted_subtotal: Decimal
    shipping_method: Optional[str] = None
    shipping_cost: Decimal
    free_shipping: bool
    total: Decimal
    currency: str
    coupon_code: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_breakdown(cls, breakdown: PriceBreakdown) -> "PriceBreakdownResponse":
        return cls.model_validate(asdict(breakdown))


class CartResponse(CamelModel):
    order_id: UUID
    breakdown: PriceBreakdownResponse


class ShippingAddressRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = "PL"


class InvoiceDetailsRequest(CamelModel):
    required: bool = False
    company_name: Optional[str] = None
    tax_id: Optional[str] = None
    address: Optional[str] = None


class AgreementsRequest(CamelModel):
    terms: bool = False
    privacy: bool = False
    marketing: bool = False


class SelectedOfferRequest(CamelModel):
    offer_id: Optional[UUID] = None
    include: bool = True


class CheckoutRequest(CamelModel):
    shipping_address: ShippingAddressRequest = Field(default_factory=ShippingAddressRequest)
    invoice_details: InvoiceDetailsRequest = Field(default_factory=InvoiceDetailsRequest)
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    agreements: AgreementsRequest = Field(default_factory=AgreementsRequest)
    selected_offers: Optional[dict[UUID, SelectedOfferRequest]] = None
    selected_upsells: Optional[list[AddonSelection]] = None
    coupon_code: Optional[str] = Field(None, max_length=40)

    def to_submission(self) -> CheckoutSubmission:
        selections = None
        if self.selected_offers is not None:
            selections = {
                item_id: SelectionEntry(
                    offer_id=entry.offer_id,
                    include=entry.include and entry.offer_id is not None,
                )
                for item_id, entry in self.selected_offers.items()
            }
        addons = None
        if self.selected_upsells is not None:
            addons = [addon.to_request() for addon in self.selected_upsells]

        return CheckoutSubmission(
            shipping_address=self.shipping_address.model_dump(),
            invoice=self.invoice_details.model_dump(),
            agreements=self.agreements.model_dump(),
            shipping_method=self.shipping_method,
            payment_method=self.payment_method,
            selections=selections,
            addons=addons,
            coupon_code=self.coupon_code or None,
        )


class CheckoutResponse(CamelModel):
    payment_id: UUID
    redirect_url: str
    totals: PriceBreakdownResponse
