"""
Offer data access.

The engine works through ``locked_item``: the item row stays locked until
the surrounding transaction ends, which serializes offer writers per item.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.database.models.offer import Offer
from partsflow.database.models.order import ChosenOffer, OrderItem, OrderRequest


class OfferRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def locked_item(self, item_id: uuid.UUID) -> AsyncIterator[Optional[OrderItem]]:
        result = await self.session.execute(
            select(OrderItem)
            .where(OrderItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        yield result.scalar_one_or_none()

    async def get_order(self, order_id: uuid.UUID) -> Optional[OrderRequest]:
        return await self.session.get(OrderRequest, order_id)

    async def get_offer(self, offer_id: uuid.UUID) -> Optional[Offer]:
        return await self.session.get(Offer, offer_id)

    async def used_slots(self, item_id: uuid.UUID) -> set[int]:
        result = await self.session.execute(
            select(Offer.slot).where(Offer.order_item_id == item_id)
        )
        return set(result.scalars().all())

    async def count_offers(self, item_id: uuid.UUID) -> int:
        total = await self.session.scalar(
            select(func.count(Offer.id)).where(Offer.order_item_id == item_id)
        )
        return int(total or 0)

    async def insert_offer(self, offer: Offer) -> Offer:
        """
        Insert inside a savepoint so a slot collision leaves the outer
        transaction usable.

        Raises:
            IntegrityError: If the slot is already taken
        """
        async with self.session.begin_nested():
            self.session.add(offer)
            await self.session.flush()
        return offer

    async def update_offer(
        self,
        offer: Offer,
        expected_version: int,
        values: dict[str, Any],
    ) -> Optional[int]:
        """
        Apply ``values`` only if the offer is still at ``expected_version``.

        Returns:
            The new version, or None if the row is gone or was edited since
        """
        result = await self.session.execute(
            update(Offer)
            .where(Offer.id == offer.id, Offer.version == expected_version)
            .values(**values, version=Offer.version + 1)
            .returning(Offer.version)
            .execution_options(synchronize_session=False)
        )
        new_version = result.scalar_one_or_none()
        if new_version is not None:
            await self.session.refresh(offer)
        return new_version

    async def current_version(self, offer_id: uuid.UUID) -> Optional[int]:
        return await self.session.scalar(select(Offer.version).where(Offer.id == offer_id))

    async def delete_offer(self, offer: Offer) -> int:
        """Delete the offer and any chosen-offer rows pointing at it."""
        result = await self.session.execute(
            delete(ChosenOffer)
            .where(ChosenOffer.offer_id == offer.id)
            .execution_options(synchronize_session=False)
        )
        await self.session.delete(offer)
        await self.session.flush()
        return result.rowcount
