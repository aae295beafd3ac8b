"""
Order data access repository.

Query-only layer over the order aggregate. Business rules, authorization and
notifications live in the service and state machine; this module never
commits, the request-scoped session does.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.logging import get_logger
from partsflow.database.models.audit_log import AuditAction, AuditLog
from partsflow.database.models.catalog import Category
from partsflow.database.models.coupon import Coupon
from partsflow.database.models.order import OrderRequest
from partsflow.database.models.user import User
from partsflow.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class OrderRepository:
    """Async data access for orders, their items and audit entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[OrderRequest]:
        """
        Load an order with its items, offers and checkout data.

        Args:
            order_id: Order identifier
            for_update: Lock the order row until the transaction ends
        """
        stmt = select(OrderRequest).where(OrderRequest.id == order_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[OrderRequest], int]:
        stmt = select(OrderRequest)
        count_stmt = select(func.count(OrderRequest.id))
        if status is not None:
            stmt = stmt.where(OrderRequest.status == status)
            count_stmt = count_stmt.where(OrderRequest.status == status)

        stmt = stmt.order_by(OrderRequest.created_at.desc()).limit(limit).offset(offset)
        orders = (await self.session.execute(stmt)).scalars().all()
        total = await self.session.scalar(count_stmt)
        return orders, int(total or 0)

    async def add(self, order: OrderRequest) -> OrderRequest:
        self.session.add(order)
        await self.session.flush()
        return order

    async def compare_and_set_status(
        self,
        order_id: uuid.UUID,
        expected: OrderStatus,
        target: OrderStatus,
    ) -> Optional[int]:
        """
        Move an order from ``expected`` to ``target`` in one statement.

        Returns:
            The new status_version, or None if the order was not in
            ``expected`` status when the statement ran
        """
        stmt = (
            update(OrderRequest)
            .where(OrderRequest.id == order_id, OrderRequest.status == expected)
            .values(
                status=target,
                status_version=OrderRequest.status_version + 1,
            )
            .returning(OrderRequest.status_version)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def link_guest_orders(self, user_id: uuid.UUID, email: str) -> int:
        """Attach unowned orders submitted with ``email`` to ``user_id``."""
        result = await self.session.execute(
            update(OrderRequest)
            .where(
                OrderRequest.user_id.is_(None),
                func.lower(OrderRequest.guest_email) == email.strip().lower(),
            )
            .values(user_id=user_id)
        )
        return result.rowcount

    async def get_categories(self, category_ids: Sequence[str]) -> dict[str, Category]:
        if not category_ids:
            return {}
        result = await self.session.execute(
            select(Category).where(Category.id.in_(set(category_ids)))
        )
        return {category.id: category for category in result.scalars().all()}

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_coupon(self, code: str) -> Optional[Coupon]:
        result = await self.session.execute(
            select(Coupon).where(Coupon.code == code.strip().upper())
        )
        return result.scalar_one_or_none()

    async def increment_coupon_usage(self, code: str) -> bool:
        """Count one redemption unless the coupon's usage limit is already reached."""
        result = await self.session.execute(
            update(Coupon)
            .where(
                Coupon.code == code.upper(),
                or_(
                    Coupon.usage_limit.is_(None),
                    Coupon.usage_count < Coupon.usage_limit,
                ),
            )
            .values(usage_count=Coupon.usage_count + 1)
        )
        if result.rowcount == 0:
            logger.warning("Coupon usage not counted", coupon_code=code.upper())
            return False
        return True

    async def add_audit_entry(
        self,
        order_id: Optional[uuid.UUID],
        action: AuditAction,
        actor_id: Optional[uuid.UUID],
        actor_role: str,
        from_status: Optional[OrderStatus] = None,
        to_status: Optional[OrderStatus] = None,
        **details: Any,
    ) -> AuditLog:
        entry = AuditLog(
            order_request_id=order_id,
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value if to_status else None,
            details={k: v for k, v in details.items() if v is not None},
        )
        self.session.add(entry)
        await self.session.flush()
        return entry
