"""
Order comment thread.
"""

import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.config import Settings, get_settings
from partsflow.core.errors import Forbidden, InvalidTransition, ValidationError
from partsflow.core.logging import get_logger
from partsflow.core.security import SessionClaims
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.comment import OrderComment
from partsflow.database.models.notification import NotificationType
from partsflow.services.identity.resolver import GuestPrincipal, actor_role_label
from partsflow.services.notifications.service import (
    NotificationDispatcher,
    truncate_preview,
)
from partsflow.services.orders.repository import OrderRepository
from partsflow.services.orders.service import get_authorized_order

logger = get_logger(__name__)

MAX_COMMENT_LENGTH = 2000


class CommentService:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.orders = OrderRepository(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db, settings=self.settings)

    async def list_comments(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
    ) -> Sequence[OrderComment]:
        """Comments oldest first; internal ones only for staff."""
        order, principal = await get_authorized_order(self.orders, claims, token, order_id)

        stmt = select(OrderComment).where(OrderComment.order_request_id == order.id)
        if not principal.is_staff:
            stmt = stmt.where(OrderComment.is_internal.is_(False))
        stmt = stmt.order_by(OrderComment.created_at)
        return (await self.db.execute(stmt)).scalars().all()

    async def add_comment(
        self,
        claims: Optional[SessionClaims],
        token: Optional[str],
        order_id: uuid.UUID,
        body: Optional[str],
        is_internal: bool = False,
    ) -> OrderComment:
        """
        Append a comment and notify the other side of the conversation.

        Raises:
            ValidationError: If the body is empty or too long
            Forbidden: If a non-staff caller posts an internal comment, or
                guest comments are disabled
            InvalidTransition: If the order has been removed
        """
        order, principal = await get_authorized_order(self.orders, claims, token, order_id)

        text = (body or "").strip()
        if not text or len(text) > MAX_COMMENT_LENGTH:
            raise ValidationError.for_field(
                "body",
                f"Comment must be between 1 and {MAX_COMMENT_LENGTH} characters",
            )
        if is_internal and not principal.is_staff:
            raise Forbidden("Only staff can post internal comments")
        if isinstance(principal, GuestPrincipal) and not self.settings.shop.guest_comments_enabled:
            raise Forbidden("Guest comments are disabled")
        if not order.status.accepts_comments:
            raise InvalidTransition(
                "Comments are closed for this order",
                current_status=order.status,
                order_id=str(order.id),
            )

        comment = OrderComment(
            order_request_id=order.id,
            author_id=principal.actor_id,
            author_role=principal.audience,
            body=text,
            is_internal=is_internal,
        )
        self.db.add(comment)
        await self.db.flush()

        await self.orders.add_audit_entry(
            order.id,
            AuditAction.COMMENT_ADDED,
            actor_id=principal.actor_id,
            actor_role=actor_role_label(principal),
            comment_id=str(comment.id),
            internal=is_internal,
        )
        logger.info(
            "Comment added",
            order_id=str(order.id),
            comment_id=str(comment.id),
            internal=is_internal,
        )

        if not is_internal:
            preview = truncate_preview(text)
            await self.dispatcher.dispatch(
                NotificationType.COMMENT_ADDED,
                order,
                principal,
                title=f"New comment on order {order.short_code}",
                body=preview,
                idempotency_key=f"comment:{comment.id}",
                template="comment_added",
            )
        return comment
