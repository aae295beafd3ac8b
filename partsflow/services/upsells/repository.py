"""
Upsell catalog queries.
"""

import uuid
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.database.models.catalog import UpsellItem


class UpsellRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self) -> Sequence[UpsellItem]:
        result = await self.session.execute(
            select(UpsellItem)
            .where(UpsellItem.active.is_(True))
            .order_by(UpsellItem.title)
        )
        return result.scalars().all()

    async def get_active_by_ids(self, ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, UpsellItem]:
        """Active upsells keyed by id; inactive or unknown ids are left out."""
        wanted = set(ids)
        if not wanted:
            return {}
        result = await self.session.execute(
            select(UpsellItem).where(
                UpsellItem.id.in_(wanted),
                UpsellItem.active.is_(True),
            )
        )
        return {upsell.id: upsell for upsell in result.scalars().all()}
