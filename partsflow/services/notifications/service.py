"""
Notification dispatcher and in-app notification queries.

The dispatcher turns an order event into one persisted Notification row and,
best-effort, one email. Rows carry an idempotency key; an event that has
already been recorded is dropped without sending a second email.

Emails are queued on the dispatcher and only sent by ``send_pending()``,
which the routers call after the request transaction has committed. Row
locks are never held across an SES call, and a rolled-back transaction
sends nothing. Email problems are logged and never propagate.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.config import Settings, get_settings
from partsflow.core.errors import Unauthorized
from partsflow.core.logging import get_logger
from partsflow.database.models.notification import (
    Notification,
    NotificationAudience,
    NotificationType,
)
from partsflow.database.models.order import OrderRequest
from partsflow.services.identity.resolver import (
    AuthenticatedPrincipal,
    GuestPrincipal,
    Principal,
)
from partsflow.services.notifications.email import EmailSender, build_email_sender

logger = get_logger(__name__)

COMMENT_PREVIEW_LENGTH = 100


def resolve_audience(
    event_type: NotificationType,
    order: OrderRequest,
    actor: Optional[Principal] = None,
) -> NotificationAudience:
    """
    Pick who an order event is addressed to.

    Customer comments go to the back office; every other event goes to the
    order's owner, as USER when an account owns it and GUEST otherwise.
    """
    if event_type is NotificationType.COMMENT_ADDED and actor is not None and not actor.is_staff:
        return NotificationAudience.ADMIN
    if order.user_id is not None:
        return NotificationAudience.USER
    return NotificationAudience.GUEST


def truncate_preview(text: str, limit: int = COMMENT_PREVIEW_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def transition_key(order: OrderRequest, event_type: NotificationType, target: Any, version: int) -> str:
    target_value = getattr(target, "value", target)
    return f"{order.id}:{event_type.value}:{target_value}:{version}"


@dataclass(frozen=True)
class PendingEmail:
    template: str
    order_id: uuid.UUID
    data: Mapping[str, Any]


class NotificationDispatcher:
    """Records order events as notifications and emails their recipients."""

    def __init__(
        self,
        db_session: AsyncSession,
        email_sender: Optional[EmailSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db_session
        self.settings = settings or get_settings()
        self.email_sender = email_sender or build_email_sender(self.settings)
        self.pending: list[PendingEmail] = []

    async def dispatch(
        self,
        event_type: NotificationType,
        order: OrderRequest,
        actor: Optional[Principal] = None,
        *,
        title: str,
        body: str,
        idempotency_key: Optional[str] = None,
        template: Optional[str] = None,
        template_data: Optional[Mapping[str, Any]] = None,
        audience: Optional[NotificationAudience] = None,
    ) -> Optional[uuid.UUID]:
        """
        Persist a notification and queue its email.

        Returns:
            The new notification id, or None when the idempotency key was
            already used
        """
        audience = audience or resolve_audience(event_type, order, actor)
        notification_id = uuid.uuid4()

        stmt = (
            pg_insert(Notification)
            .values(
                id=notification_id,
                type=event_type,
                audience=audience,
                order_request_id=order.id,
                user_id=order.user_id if audience is NotificationAudience.USER else None,
                title=title,
                body=body,
                is_read=False,
                idempotency_key=idempotency_key,
            )
            .on_conflict_do_nothing(index_elements=[Notification.idempotency_key])
            .returning(Notification.id)
        )
        result = await self.db.execute(stmt)
        if result.scalar_one_or_none() is None:
            logger.info(
                "Duplicate notification suppressed",
                order_id=str(order.id),
                event_type=event_type.value,
                idempotency_key=idempotency_key,
            )
            return None

        logger.info(
            "Notification created",
            notification_id=str(notification_id),
            order_id=str(order.id),
            event_type=event_type.value,
            audience=audience.value,
        )

        if template is not None:
            self._queue_email(template, order, audience, title, body, template_data or {})

        return notification_id

    def _queue_email(
        self,
        template: str,
        order: OrderRequest,
        audience: NotificationAudience,
        title: str,
        body: str,
        template_data: Mapping[str, Any],
    ) -> None:
        if not self.settings.notifications.email_enabled:
            return

        recipient = self._recipient_for(order, audience)
        if not recipient:
            logger.info(
                "No email recipient for notification",
                order_id=str(order.id),
                audience=audience.value,
            )
            return

        data = {
            "to": recipient,
            "title": title,
            "body": body,
            "brand": self.settings.brand.model_dump(),
            "currency": self.settings.shop.currency,
            "order": {
                "id": str(order.id),
                "short_code": order.short_code,
                "vin": order.vin,
                "status": order.status.value,
            },
            "order_url": self._order_url(order, audience),
            **template_data,
        }
        self.pending.append(PendingEmail(template=template, order_id=order.id, data=data))

    async def send_pending(self) -> int:
        """
        Send queued emails; call only after the transaction has committed.

        Returns:
            How many emails were accepted by the email backend
        """
        pending, self.pending = self.pending, []
        delivered = 0
        for email in pending:
            try:
                result = await asyncio.to_thread(self.email_sender.send, email.template, email.data)
            except Exception as e:
                # Never propagate: the triggering transaction has already committed.
                logger.error(
                    "Email delivery failed",
                    template=email.template,
                    order_id=str(email.order_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if not result.success:
                logger.warning(
                    "Email delivery rejected",
                    template=email.template,
                    order_id=str(email.order_id),
                    error=result.error,
                )
                continue
            delivered += 1
        return delivered

    def _recipient_for(self, order: OrderRequest, audience: NotificationAudience) -> Optional[str]:
        if audience.is_back_office:
            if not self.settings.notifications.admin_alerts_enabled:
                return None
            return self.settings.admin_notification_email
        if audience is NotificationAudience.USER:
            return order.contact_email
        return order.guest_email

    def _order_url(self, order: OrderRequest, audience: NotificationAudience) -> str:
        base = self.settings.public_base_url
        if audience.is_back_office:
            return f"{base}/admin/orders/{order.id}"
        return f"{base}/orders/{order.id}"


class NotificationService:
    """Lists and marks notifications within the caller's scope."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    def _scope(self, principal: Principal):
        if isinstance(principal, AuthenticatedPrincipal):
            if principal.is_staff:
                return Notification.audience.in_(
                    [NotificationAudience.ADMIN, NotificationAudience.STAFF]
                )
            return Notification.user_id == principal.user_id
        if isinstance(principal, GuestPrincipal):
            return and_(
                Notification.order_request_id == principal.order_id,
                Notification.audience == NotificationAudience.GUEST,
            )
        raise Unauthorized("Authentication required")

    async def list_notifications(
        self,
        principal: Principal,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[Notification], int]:
        """
        Return ``(notifications, unread_count)`` newest first.

        Raises:
            Unauthorized: If the caller is not identified
        """
        scope = self._scope(principal)

        stmt = select(Notification).where(scope)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit).offset(offset)
        notifications = (await self.db.execute(stmt)).scalars().all()

        unread_count = await self.db.scalar(
            select(func.count(Notification.id)).where(scope, Notification.is_read.is_(False))
        )
        return notifications, int(unread_count or 0)

    async def mark_read(
        self,
        principal: Principal,
        ids: Optional[Sequence[uuid.UUID]] = None,
        mark_all: bool = False,
    ) -> int:
        """Mark notifications as read; returns how many rows changed."""
        scope = self._scope(principal)
        if not mark_all and not ids:
            return 0

        stmt = (
            update(Notification)
            .where(scope, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        if not mark_all:
            stmt = stmt.where(Notification.id.in_(list(ids)))

        result = await self.db.execute(stmt)
        logger.info("Notifications marked read", count=result.rowcount, mark_all=mark_all)
        return result.rowcount
