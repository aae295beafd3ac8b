"""
Payment gateway callback handling.

The callback is verified with an HMAC signature over the raw body, then
applied to the Payment it names. Replays of a settled payment are
acknowledged without side effects, and an order already marked PAID by
staff is left untouched.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.config import Settings, get_settings
from partsflow.core.errors import NotFound, Unauthorized, ValidationError
from partsflow.core.logging import get_logger
from partsflow.core.security import verify_webhook_signature
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.notification import NotificationType
from partsflow.database.models.payment import Payment, PaymentStatus
from partsflow.services.notifications.service import NotificationDispatcher
from partsflow.services.orders.enums import OrderStatus
from partsflow.services.orders.repository import OrderRepository
from partsflow.services.orders.state_machine import OrderStateMachine
from partsflow.services.payments.repository import PaymentRepository

logger = get_logger(__name__)

WEBHOOK_STATUSES = {"succeeded", "failed"}


@dataclass(frozen=True)
class PaymentCallback:
    payment_id: uuid.UUID
    amount: int
    currency: str
    status: str
    provider_reference: Optional[str] = None


@dataclass(frozen=True)
class CallbackOutcome:
    payment_id: uuid.UUID
    payment_status: PaymentStatus
    order_status: OrderStatus
    duplicate: bool = False


class PaymentService:
    """Applies signed payment gateway callbacks."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.payments = PaymentRepository(db)
        self.orders = OrderRepository(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db, settings=self.settings)
        self.state_machine = OrderStateMachine(self.orders, self.dispatcher)

    def verify_signature(self, body: bytes, signature: Optional[str]) -> None:
        """
        Raises:
            Unauthorized: If the signature is missing or wrong
        """
        if not verify_webhook_signature(body, signature, self.settings.payment_webhook_secret):
            logger.warning("Payment callback signature rejected", has_signature=bool(signature))
            raise Unauthorized("Invalid webhook signature")

    async def handle_callback(self, callback: PaymentCallback) -> CallbackOutcome:
        """
        Settle a payment from a verified callback.

        Raises:
            NotFound: If the payment is unknown
            ValidationError: If the status, amount or currency does not match
        """
        status = callback.status.strip().lower()
        if status not in WEBHOOK_STATUSES:
            raise ValidationError.for_field("status", f"Unknown payment status: {callback.status}")

        # Lock order then payment, the same order checkout and staff
        # settlement take their locks in.
        payment = await self.payments.get(callback.payment_id)
        if payment is None:
            raise NotFound(
                "Payment not found",
                resource="payment",
                payment_id=str(callback.payment_id),
            )

        order = await self.orders.get_by_id(payment.order_request_id, for_update=True)
        if order is None:
            raise NotFound("Order not found", resource="order", order_id=str(payment.order_request_id))

        payment = await self.payments.get_for_update(callback.payment_id)
        if payment is None:
            raise NotFound(
                "Payment not found",
                resource="payment",
                payment_id=str(callback.payment_id),
            )

        if payment.status in (PaymentStatus.SUCCEEDED, PaymentStatus.FAILED):
            logger.info(
                "Duplicate payment callback acknowledged",
                payment_id=str(payment.id),
                payment_status=payment.status.value,
            )
            return CallbackOutcome(payment.id, payment.status, order.status, duplicate=True)

        self._check_amount(payment, callback)

        payment.provider_reference = callback.provider_reference or payment.provider_reference
        payment.raw_payload = _callback_payload(callback)

        if status == "succeeded":
            await self._succeed(payment, order)
        else:
            await self._fail(payment, order)

        return CallbackOutcome(payment.id, payment.status, order.status)

    def _check_amount(self, payment: Payment, callback: PaymentCallback) -> None:
        errors = []
        if callback.amount != payment.amount_minor_units:
            errors.append("amount")
        if callback.currency.strip().upper() != payment.currency:
            errors.append("currency")
        if errors:
            logger.warning(
                "Payment callback does not match payment",
                payment_id=str(payment.id),
                expected_amount=payment.amount_minor_units,
                received_amount=callback.amount,
                fields=errors,
            )
            raise ValidationError.for_field(
                errors[0],
                "Callback does not match the payment",
                payment_id=str(payment.id),
            )

    async def _succeed(self, payment: Payment, order) -> None:
        payment.status = PaymentStatus.SUCCEEDED

        await self.orders.add_audit_entry(
            order.id,
            AuditAction.PAYMENT_CONFIRMED,
            actor_id=None,
            actor_role="SYSTEM",
            payment_id=str(payment.id),
            provider=payment.provider.value,
            trigger="payment",
        )

        if order.status is OrderStatus.VALUATED:
            await self.state_machine.apply_transition(
                order,
                OrderStatus.PAID,
                actor=None,
                trigger="payment",
                payment_id=str(payment.id),
            )
        else:
            logger.info(
                "Payment settled without status change",
                order_id=str(order.id),
                order_status=order.status.value,
                payment_id=str(payment.id),
            )

    async def _fail(self, payment: Payment, order) -> None:
        payment.status = PaymentStatus.FAILED

        await self.orders.add_audit_entry(
            order.id,
            AuditAction.PAYMENT_FAILED,
            actor_id=None,
            actor_role="SYSTEM",
            payment_id=str(payment.id),
            provider=payment.provider.value,
        )
        logger.info("Payment failed", order_id=str(order.id), payment_id=str(payment.id))

        await self.dispatcher.dispatch(
            NotificationType.PAYMENT_FAILED,
            order,
            None,
            title="Payment failed",
            body=f"Payment for order {order.short_code} did not go through. You can try again.",
            idempotency_key=f"payment:{payment.id}:failed",
            template="payment_failed",
            template_data={"amount": payment.amount},
        )


def _callback_payload(callback: PaymentCallback) -> Mapping[str, Any]:
    return {
        "amount": callback.amount,
        "currency": callback.currency,
        "status": callback.status,
        "provider_reference": callback.provider_reference,
    }

