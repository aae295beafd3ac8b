"""Order state machine with compare-and-swap transitions.

Transitions are validated against ORDER_STATUS_TRANSITIONS and applied with a
single conditional UPDATE, so when two actors race (an admin clicking "mark
paid" while the payment callback arrives) exactly one wins. The loser gets
InvalidTransition and emits no notification.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.orm.attributes import set_committed_value

from partsflow.core.errors import InvalidTransition
from partsflow.core.logging import get_logger
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.notification import NotificationType
from partsflow.database.models.order import OrderRequest
from partsflow.services.identity.resolver import Principal, actor_role_label
from partsflow.services.notifications.service import (
    NotificationDispatcher,
    transition_key,
)
from partsflow.services.orders.enums import (
    ItemState,
    OrderStatus,
    get_allowed_transitions,
    validate_order_status_transition,
)
from partsflow.services.orders.repository import OrderRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class TransitionNotice:
    event_type: NotificationType
    template: str
    title: str
    body: str


TRANSITION_NOTICES: Dict[OrderStatus, TransitionNotice] = {
    OrderStatus.VALUATED: TransitionNotice(
        NotificationType.STATUS_CHANGED,
        "status_changed",
        "Offers are ready",
        "Offers for order {short_code} are ready for your review.",
    ),
    OrderStatus.PAID: TransitionNotice(
        NotificationType.PAYMENT_SUCCEEDED,
        "payment_succeeded",
        "Payment received",
        "Payment for order {short_code} has been received.",
    ),
    OrderStatus.REMOVED: TransitionNotice(
        NotificationType.ORDER_REMOVED,
        "order_removed",
        "Order removed",
        "Order {short_code} has been removed.",
    ),
    OrderStatus.PENDING: TransitionNotice(
        NotificationType.ORDER_RESTORED,
        "order_restored",
        "Order restored",
        "Order {short_code} has been restored and is pending review.",
    ),
}


def validate_status_transition(order: OrderRequest, target_status: OrderStatus) -> None:
    """
    Raise InvalidTransition unless ``order`` may move to ``target_status``.
    """
    current_status = order.status
    if not validate_order_status_transition(current_status, target_status):
        allowed = sorted(s.value for s in get_allowed_transitions(current_status))
        raise InvalidTransition(
            f"Invalid transition from {current_status.value} to {target_status.value}",
            current_status=current_status,
            target_status=target_status,
            order_id=str(order.id),
            allowed_transitions=allowed,
        )


class OrderStateMachine:
    """Applies order status transitions with side effects and notifications."""

    def __init__(
        self,
        repository: OrderRepository,
        dispatcher: NotificationDispatcher,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self._side_effects: Dict[
            OrderStatus, Callable[[OrderRequest], Awaitable[None]]
        ] = {
            OrderStatus.PAID: self._effect_paid,
        }

    async def apply_transition(
        self,
        order: OrderRequest,
        target_status: OrderStatus,
        actor: Optional[Principal] = None,
        reason: Optional[str] = None,
        trigger: str = "admin",
        **metadata: Any,
    ) -> int:
        """
        Transition ``order`` to ``target_status``.

        Args:
            order: Loaded order; its status attributes are updated in place
            target_status: Desired status
            actor: Principal performing the change, None for system triggers
            reason: Free-text reason stored in the audit log and emails
            trigger: What caused the change ("admin", "payment")

        Returns:
            The order's new status_version

        Raises:
            InvalidTransition: If the move is not allowed, or another actor
                changed the status first
        """
        validate_status_transition(order, target_status)
        previous_status = order.status

        new_version = await self.repository.compare_and_set_status(
            order.id, previous_status, target_status
        )
        if new_version is None:
            logger.warning(
                "Concurrent status change lost",
                order_id=str(order.id),
                transition=f"{previous_status.value}->{target_status.value}",
                trigger=trigger,
            )
            raise InvalidTransition(
                "Order status was changed by another action",
                current_status=previous_status,
                target_status=target_status,
                order_id=str(order.id),
                concurrent=True,
            )

        set_committed_value(order, "status", target_status)
        set_committed_value(order, "status_version", new_version)

        await self.repository.add_audit_entry(
            order.id,
            AuditAction.STATUS_CHANGED,
            actor_id=getattr(actor, "actor_id", None),
            actor_role=actor_role_label(actor),
            from_status=previous_status,
            to_status=target_status,
            reason=reason,
            trigger=trigger,
            **metadata,
        )

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            await side_effect(order)

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            transition=f"{previous_status.value}->{target_status.value}",
            trigger=trigger,
            status_version=new_version,
        )

        await self._notify(order, target_status, actor, reason, new_version)
        return new_version

    async def _effect_paid(self, order: OrderRequest) -> None:
        """Purchased lines become PURCHASED, unchosen quoted lines DECLINED."""
        purchased = declined = 0
        for item in order.items:
            if item.chosen_offer is not None:
                item.state = ItemState.PURCHASED
                purchased += 1
            elif item.state is ItemState.VALUATED:
                item.state = ItemState.DECLINED
                declined += 1

        if order.coupon_code:
            await self.repository.increment_coupon_usage(order.coupon_code)

        logger.info(
            "Order items settled",
            order_id=str(order.id),
            purchased=purchased,
            declined=declined,
        )

    async def _notify(
        self,
        order: OrderRequest,
        target_status: OrderStatus,
        actor: Optional[Principal],
        reason: Optional[str],
        version: int,
    ) -> None:
        notice = TRANSITION_NOTICES[target_status]
        template_data: Dict[str, Any] = {"reason": reason}
        if target_status is OrderStatus.PAID and order.total_amount is not None:
            template_data["amount"] = order.total_amount

        await self.dispatcher.dispatch(
            notice.event_type,
            order,
            actor,
            title=notice.title,
            body=notice.body.format(short_code=order.short_code),
            idempotency_key=transition_key(order, notice.event_type, target_status, version),
            template=notice.template,
            template_data=template_data,
        )
