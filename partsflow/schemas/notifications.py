"""
Notification, comment, upsell and payment callback schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field, model_validator

from partsflow.database.models.notification import NotificationAudience, NotificationType
from partsflow.database.models.payment import PaymentStatus
from partsflow.schemas.common import CamelModel
from partsflow.services.orders.enums import OrderStatus


class NotificationResponse(CamelModel):
    id: UUID
    type: NotificationType
    audience: NotificationAudience
    order_request_id: Optional[UUID] = None
    title: str
    body: str
    is_read: bool
    created_at: datetime


class NotificationListResponse(CamelModel):
    items: list[NotificationResponse]
    unread_count: int


class MarkReadRequest(CamelModel):
    ids: Optional[list[UUID]] = None
    all: bool = False

    @model_validator(mode="after")
    def require_target(self) -> "MarkReadRequest":
        if not self.all and not self.ids:
            raise ValueError("Provide ids or all=true")
        return self


class MarkReadResponse(CamelModel):
    updated: int


class CommentCreateRequest(CamelModel):
    body: str = Field(..., description="Comment text, 1 to 2000 characters")
    is_internal: bool = False


class CommentResponse(CamelModel):
    id: UUID
    author_id: Optional[UUID] = None
    author_role: NotificationAudience
    body: str
    is_internal: bool
    created_at: datetime


class UpsellResponse(CamelModel):
    id: UUID
    title: str
    description: Optional[str] = None
    price: Decimal
    image_url: Optional[str] = None


class PaymentCallbackRequest(CamelModel):
    payment_id: UUID
    amount: int = Field(..., ge=0, description="Amount in minor units")
    currency: str = Field(..., min_length=3, max_length=3)
    status: str
    provider_reference: Optional[str] = Field(None, max_length=200)


class PaymentCallbackResponse(CamelModel):
    payment_id: UUID
    payment_status: PaymentStatus
    order_status: OrderStatus
    duplicate: bool = False
