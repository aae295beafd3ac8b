"""
Admin offer schemas.

Field rules are enforced by the offer engine so errors share one format;
the schema only shapes the payload.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field

from partsflow.schemas.common import CamelModel


class OfferCreateRequest(CamelModel):
    order_item_id: UUID
    manufacturer: str
    unit_price: Decimal
    quantity_available: int
    notes: Optional[str] = None


class OfferUpdateRequest(CamelModel):
    offer_id: UUID
    version: int = Field(..., ge=1, description="Version the edit was based on")
    manufacturer: str
    unit_price: Decimal
    quantity_available: int
    notes: Optional[str] = None


class OfferDeletedResponse(CamelModel):
    offer_id: UUID
    deleted: bool = True
