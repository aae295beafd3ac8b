"""
Fixtures for endpoint tests.

The database session is always replaced with a mock; individual tests swap
in service mocks through ``app.dependency_overrides``.
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest

from partsflow.core.security import create_session_token
from partsflow.database.connection import get_db
from partsflow.main import app


@pytest.fixture(autouse=True)
def override_db(mock_db_session: AsyncMock) -> AsyncMock:
    async def _get_db() -> AsyncGenerator[AsyncMock, None]:
        yield mock_db_session

    app.dependency_overrides[get_db] = _get_db
    yield mock_db_session
    app.dependency_overrides.clear()


@pytest.fixture
def override():
    """Replace a dependency with a fixed object for the duration of a test."""

    def _override(dependency, value):
        app.dependency_overrides[dependency] = lambda: value
        return value

    return _override


@pytest.fixture
def admin_headers(admin_claims) -> dict[str, str]:
    token = create_session_token(admin_claims.user_id, admin_claims.role, admin_claims.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers(customer_claims) -> dict[str, str]:
    token = create_session_token(customer_claims.user_id, customer_claims.role, customer_claims.email)
    return {"Authorization": f"Bearer {token}"}
