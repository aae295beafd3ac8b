"""
Tests for order repository writes that guard shared counters.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from partsflow.services.orders.repository import OrderRepository


class TestIncrementCouponUsage:
    @pytest.mark.asyncio
    async def test_counts_redemption(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.return_value = MagicMock(rowcount=1)

        assert await OrderRepository(mock_db_session).increment_coupon_usage("spring10") is True

    @pytest.mark.asyncio
    async def test_update_is_bounded_by_usage_limit(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.return_value = MagicMock(rowcount=1)

        await OrderRepository(mock_db_session).increment_coupon_usage("spring10")

        stmt = mock_db_session.execute.await_args.args[0]
        where = str(stmt.whereclause)
        assert "coupons.usage_limit IS NULL" in where
        assert "coupons.usage_count < coupons.usage_limit" in where

    @pytest.mark.asyncio
    async def test_exhausted_coupon_not_counted(self, mock_db_session: AsyncMock) -> None:
        mock_db_session.execute.return_value = MagicMock(rowcount=0)

        assert await OrderRepository(mock_db_session).increment_coupon_usage("SPRING10") is False
