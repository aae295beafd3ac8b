"""
Payment data access.
"""

import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.database.models.payment import Payment, PaymentStatus


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, payment_id: uuid.UUID) -> Optional[Payment]:
        return await self.session.get(Payment, payment_id)

    async def get_for_update(self, payment_id: uuid.UUID) -> Optional[Payment]:
        """Load a payment and lock its row until the transaction ends."""
        result = await self.session.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def latest_pending(self, order_id: uuid.UUID) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(
                Payment.order_request_id == order_id,
                Payment.status == PaymentStatus.INIT,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def cancel_pending(self, order_id: uuid.UUID) -> int:
        """Cancel INIT payments superseded by a new checkout."""
        result = await self.session.execute(
            update(Payment)
            .where(
                Payment.order_request_id == order_id,
                Payment.status == PaymentStatus.INIT,
            )
            .values(status=PaymentStatus.CANCELLED)
        )
        return result.rowcount

    async def add(self, payment: Payment) -> Payment:
        self.session.add(payment)
        await self.session.flush()
        return payment
