"""
Pytest configuration and shared test fixtures.

Environment variables are set before the application package is imported so
the cached settings pick up test values. Fixtures provide session doubles,
principals and an async client wired to the FastAPI app through
ASGITransport.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-for-partsflow-suite-0123456789")
os.environ.setdefault("APP_PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("APP_EMAIL_BACKEND", "disabled")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from partsflow.core.config import Settings, get_settings
from partsflow.core.security import SessionClaims
from partsflow.database.models.user import UserRole
from partsflow.services.identity.resolver import AuthenticatedPrincipal, GuestPrincipal


@pytest.fixture
def settings() -> Settings:
    """Application settings resolved from the test environment."""
    return get_settings()


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """
    Create an async session double.

    ``add`` is synchronous on a real AsyncSession, everything else awaits.
    ``begin_nested`` returns an async context manager like a savepoint.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()

    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=savepoint)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=savepoint)
    return session


@pytest.fixture
def mock_dispatcher() -> AsyncMock:
    dispatcher = AsyncMock()
    dispatcher.dispatch = AsyncMock(return_value=True)
    return dispatcher


# ============================================================================
# Principals
# ============================================================================


@pytest.fixture
def admin_claims() -> SessionClaims:
    return SessionClaims(user_id=uuid4(), role="ADMIN", email="admin@partsflow.local")


@pytest.fixture
def customer_claims() -> SessionClaims:
    return SessionClaims(user_id=uuid4(), role="USER", email="jan@example.com")


@pytest.fixture
def admin_principal(admin_claims: SessionClaims) -> AuthenticatedPrincipal:
    return AuthenticatedPrincipal(
        user_id=admin_claims.user_id,
        email=admin_claims.email,
        role=UserRole.ADMIN,
    )


@pytest.fixture
def customer_principal(customer_claims: SessionClaims) -> AuthenticatedPrincipal:
    return AuthenticatedPrincipal(
        user_id=customer_claims.user_id,
        email=customer_claims.email,
        role=UserRole.USER,
    )


@pytest.fixture
def guest_principal() -> GuestPrincipal:
    return GuestPrincipal(
        order_id=uuid4(),
        token_expires_at=datetime.now(timezone.utc) + timedelta(days=30),
    )


# ============================================================================
# HTTP Client
# ============================================================================


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """
    Async client bound to the app without running the lifespan.

    Tests override service dependencies through ``app.dependency_overrides``.
    """
    from partsflow.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
