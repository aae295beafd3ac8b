"""
Order service orchestrating intake, reads and status changes.

The service validates customer submissions, persists the order aggregate,
and routes every status change through the state machine so audit entries
and notifications are produced in one place.
"""

import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.config import Settings, get_settings
from partsflow.core.errors import FieldError, NotFound, Unauthorized, ValidationError
from partsflow.core.logging import get_logger
from partsflow.core.security import (
    SessionClaims,
    generate_magic_link_token,
    generate_short_code,
    hash_magic_link_token,
    magic_link_expiry,
)
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.notification import NotificationAudience, NotificationType
from partsflow.database.models.order import OrderItem, OrderRequest
from partsflow.database.models.payment import Payment, PaymentProvider, PaymentStatus
from partsflow.services.identity.resolver import (
    AuthenticatedPrincipal,
    Principal,
    actor_role_label,
    ensure_order_access,
    require_authenticated,
    require_staff,
    resolve_principal,
)
from partsflow.services.notifications.service import NotificationDispatcher
from partsflow.services.orders.enums import ItemState, OrderStatus
from partsflow.services.orders.repository import OrderRepository
from partsflow.services.orders.state_machine import (
    OrderStateMachine,
    validate_status_transition,
)
from partsflow.services.payments.repository import PaymentRepository

logger = get_logger(__name__)

VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
MAX_ITEM_QUANTITY = 999
MAX_NOTE_LENGTH = 200
SHORT_CODE_ATTEMPTS = 5


@dataclass(frozen=True)
class OrderItemInput:
    category_id: str
    quantity: int
    note: Optional[str] = None
    photo_url: Optional[str] = None


@dataclass(frozen=True)
class CreatedOrder:
    order: OrderRequest
    magic_link_url: Optional[str] = None


def normalize_vin(vin: Optional[str]) -> str:
    return (vin or "").strip().upper()


def is_valid_vin(vin: str) -> bool:
    return bool(VIN_PATTERN.match(vin))


async def get_authorized_order(
    repository: OrderRepository,
    claims: Optional[SessionClaims],
    token: Optional[str],
    order_id: uuid.UUID,
    for_update: bool = False,
) -> tuple[OrderRequest, Principal]:
    """
    Load an order and check the caller may see it.

    Raises:
        Unauthorized: If neither a session nor a magic-link token was given
        NotFound: If the order is absent or belongs to someone else
    """
    if claims is None and not token:
        raise Unauthorized("Authentication required")

    order = await repository.get_by_id(order_id, for_update=for_update)
    if order is None:
        raise NotFound("Order not found", resource="order", order_id=str(order_id))

    principal = resolve_principal(claims, token=token, order=order)
    ensure_order_access(principal, order)
    return order, principal


class OrderService:
    """
    Order intake, listing, status changes and guest linking.

    Attributes:
        repository: Order data access
        payments: Payment data access, used when staff mark an order paid
        dispatcher: Notification dispatcher shared with the state machine
        state_machine: Applies status transitions
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.repository = OrderRepository(db)
        self.payments = PaymentRepository(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db, settings=self.settings)
        self.state_machine = OrderStateMachine(self.repository, self.dispatcher)

    async def create_order(
        self,
        principal: Principal,
        vin: Optional[str],
        email: Optional[str],
        items: Sequence[OrderItemInput],
    ) -> CreatedOrder:
        """
        Validate and persist a new order request.

        Guests receive a magic link; logged-in users own the order directly.

        Raises:
            ValidationError: With one FieldError per invalid field
        """
        errors: list[FieldError] = []

        normalized_vin = normalize_vin(vin)
        if not is_valid_vin(normalized_vin):
            errors.append(FieldError("vin", "VIN must be 17 characters without I, O or Q"))

        user = None
        guest_email: Optional[str] = None
        if isinstance(principal, AuthenticatedPrincipal):
            user = await self.repository.get_user(principal.user_id)
            if user is None:
                raise Unauthorized("Unknown user", user_id=str(principal.user_id))
        else:
            try:
                guest_email = validate_email(
                    (email or "").strip(), check_deliverability=False
                ).normalized
            except EmailNotValidError:
                errors.append(FieldError("email", "A valid email is required"))

        if not items:
            errors.append(FieldError("items", "At least one item is required"))

        categories = await self.repository.get_categories([i.category_id for i in items])
        for index, item in enumerate(items):
            if not 1 <= item.quantity <= MAX_ITEM_QUANTITY:
                errors.append(
                    FieldError(
                        f"items[{index}].quantity",
                        f"Quantity must be between 1 and {MAX_ITEM_QUANTITY}",
                    )
                )
            if item.note and len(item.note) > MAX_NOTE_LENGTH:
                errors.append(
                    FieldError(
                        f"items[{index}].note",
                        f"Note must be at most {MAX_NOTE_LENGTH} characters",
                    )
                )
            if item.category_id not in categories:
                errors.append(FieldError(f"items[{index}].categoryId", "Unknown category"))

        if errors:
            raise ValidationError("Order request is invalid", errors=errors)

        token: Optional[str] = None
        token_hash: Optional[str] = None
        expires_at = None
        if user is None:
            token = generate_magic_link_token()
            token_hash = hash_magic_link_token(token)
            expires_at = magic_link_expiry()

        order = await self._insert_with_short_code(
            lambda: OrderRequest(
                short_code=generate_short_code(),
                vin=normalized_vin,
                guest_email=guest_email,
                user_id=user.id if user is not None else None,
                user=user,
                status=OrderStatus.PENDING,
                status_version=0,
                magic_link_hash=token_hash,
                magic_link_expires_at=expires_at,
                selection_draft={},
                items=[
                    OrderItem(
                        category_id=item.category_id,
                        category_path=categories[item.category_id].path,
                        quantity=item.quantity,
                        note=item.note or None,
                        photo_url=item.photo_url or None,
                        state=ItemState.REQUESTED,
                        offers=[],
                        chosen_offer=None,
                    )
                    for item in items
                ],
                shipping_address=None,
                invoice_details=None,
                shipment=None,
                addons=[],
                payments=[],
            )
        )

        await self.repository.add_audit_entry(
            order.id,
            AuditAction.ORDER_CREATED,
            actor_id=getattr(principal, "actor_id", None),
            actor_role=actor_role_label(principal),
            to_status=OrderStatus.PENDING,
            item_count=len(items),
        )

        magic_link_url = None
        if token is not None:
            magic_link_url = f"{self.settings.public_base_url}/orders/{order.id}?token={token}"

        await self.dispatcher.dispatch(
            NotificationType.STATUS_CHANGED,
            order,
            principal,
            title="New order submitted",
            body=f"Order {order.short_code} for VIN {order.vin} needs valuation.",
            idempotency_key=f"{order.id}:{NotificationType.STATUS_CHANGED.value}:SUBMITTED:admin",
            template="new_order_admin",
            template_data={"item_count": len(items)},
            audience=NotificationAudience.ADMIN,
        )
        await self.dispatcher.dispatch(
            NotificationType.STATUS_CHANGED,
            order,
            principal,
            title="Order received",
            body=f"We received order {order.short_code} and will send offers soon.",
            idempotency_key=f"{order.id}:{NotificationType.STATUS_CHANGED.value}:SUBMITTED:customer",
            template="order_confirmation",
            template_data={
                "item_count": len(items),
                "magic_link_url": magic_link_url,
                "magic_link_expires_at": expires_at,
            },
            audience=NotificationAudience.GUEST if user is None else NotificationAudience.USER,
        )

        logger.info(
            "Order created",
            order_id=str(order.id),
            short_code=order.short_code,
            guest=user is None,
            item_count=len(items),
        )
        return CreatedOrder(order=order, magic_link_url=magic_link_url)

    async def _insert_with_short_code(self, build) -> OrderRequest:
        """Insert an order, drawing a fresh short code on collision."""
        attempt = 1
        while True:
            order = build()
            try:
                async with self.db.begin_nested():
                    self.db.add(order)
                    await self.db.flush()
                return order
            except IntegrityError as e:
                if "short_code" not in str(e.orig) or attempt >= SHORT_CODE_ATTEMPTS:
                    raise
                logger.warning("Short code collision", attempt=attempt)
                attempt += 1

    async def get_order_detail(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
    ) -> tuple[OrderRequest, Principal]:
        return await get_authorized_order(self.repository, claims, token, order_id)

    async def list_orders(
        self,
        principal: Principal,
        status: Optional[OrderStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[OrderRequest], int]:
        require_staff(principal)
        return await self.repository.list_orders(status=status, limit=limit, offset=offset)

    async def change_status(
        self,
        principal: Principal,
        order_id: uuid.UUID,
        target_status: OrderStatus,
        reason: Optional[str] = None,
    ) -> OrderRequest:
        """
        Staff status change.

        Marking an order PAID settles its pending payment, or records a
        manual one, so a succeeded payment always backs the PAID status.

        Raises:
            Forbidden: If the caller is not staff
            NotFound: If the order does not exist
            InvalidTransition: If the move is not allowed
        """
        staff = require_staff(principal)

        order = await self.repository.get_by_id(order_id, for_update=True)
        if order is None:
            raise NotFound("Order not found", resource="order", order_id=str(order_id))

        validate_status_transition(order, target_status)
        if target_status is OrderStatus.PAID:
            await self._settle_manual_payment(order, staff)

        await self.state_machine.apply_transition(
            order,
            target_status,
            actor=staff,
            reason=reason,
            trigger="admin",
        )
        return order

    async def _settle_manual_payment(
        self,
        order: OrderRequest,
        staff: AuthenticatedPrincipal,
    ) -> Payment:
        payment = await self.payments.latest_pending(order.id)
        if payment is not None:
            payment.status = PaymentStatus.SUCCEEDED
            payment.raw_payload = {
                **(payment.raw_payload or {}),
                "settled_by": str(staff.user_id),
            }
        else:
            payment = await self.payments.add(
                Payment(
                    order_request_id=order.id,
                    provider=PaymentProvider.MANUAL,
                    amount=order.total_amount or Decimal("0.00"),
                    currency=self.settings.shop.currency,
                    status=PaymentStatus.SUCCEEDED,
                    raw_payload={"settled_by": str(staff.user_id)},
                )
            )

        await self.repository.add_audit_entry(
            order.id,
            AuditAction.PAYMENT_CONFIRMED,
            actor_id=staff.user_id,
            actor_role=actor_role_label(staff),
            payment_id=str(payment.id) if payment.id else None,
            provider=payment.provider.value,
            trigger="admin",
        )
        logger.info(
            "Payment settled manually",
            order_id=str(order.id),
            provider=payment.provider.value,
        )
        return payment

    async def link_guest_orders(self, principal: Principal) -> int:
        """
        Attach guest orders submitted with the caller's email to the account.

        Raises:
            Unauthorized: If the caller has no session
            ValidationError: If the session carries no email claim
        """
        user = require_authenticated(principal)
        if not user.email:
            raise ValidationError.for_field("email", "Session has no email address")

        linked = await self.repository.link_guest_orders(user.user_id, user.email)
        await self.repository.add_audit_entry(
            None,
            AuditAction.GUEST_ORDERS_LINKED,
            actor_id=user.user_id,
            actor_role=actor_role_label(user),
            linked=linked,
        )
        logger.info("Guest orders linked", user_id=str(user.user_id), linked=linked)
        return linked

