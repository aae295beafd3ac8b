"""
Test suite for the order service.

Covers VIN handling, intake validation, magic-link issuance, short code
collisions, order access for guests and staff status changes.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from partsflow.core.errors import (
    Forbidden,
    InvalidTransition,
    NotFound,
    Unauthorized,
    ValidationError,
)
from partsflow.core.security import hash_magic_link_token
from partsflow.database.models import User, UserRole
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.notification import NotificationAudience
from partsflow.database.models.payment import PaymentProvider, PaymentStatus
from partsflow.services.identity.resolver import Unauthenticated
from partsflow.services.orders.enums import OrderStatus
from partsflow.services.orders.service import (
    SHORT_CODE_ATTEMPTS,
    OrderItemInput,
    OrderService,
    is_valid_vin,
    normalize_vin,
)
from tests.factories import make_order

VALID_VIN = "WVWZZZ1JZXW000001"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def mock_repository() -> AsyncMock:
    repository = AsyncMock()
    repository.get_categories = AsyncMock(
        return_value={
            "brakes-pads": SimpleNamespace(id="brakes-pads", path="Brakes / Pads"),
            "filters-oil": SimpleNamespace(id="filters-oil", path="Filters / Oil"),
        }
    )
    return repository


@pytest.fixture
def mock_payments() -> AsyncMock:
    payments = AsyncMock()
    payments.add = AsyncMock(side_effect=lambda payment: payment)
    return payments


@pytest.fixture
def service(
    mock_db_session: AsyncMock,
    mock_dispatcher: AsyncMock,
    mock_repository: AsyncMock,
    mock_payments: AsyncMock,
    settings,
) -> OrderService:
    service = OrderService(mock_db_session, dispatcher=mock_dispatcher, settings=settings)
    service.repository = mock_repository
    service.payments = mock_payments
    service.state_machine = AsyncMock()
    return service


@pytest.fixture
def assign_ids_on_flush(mock_db_session: AsyncMock):
    """Give added rows an id on flush, as the database default would."""

    async def flush():
        for call in mock_db_session.add.call_args_list:
            row = call.args[0]
            if getattr(row, "id", None) is None:
                row.id = uuid4()

    mock_db_session.flush.side_effect = flush
    return mock_db_session


def _items(*pairs) -> list[OrderItemInput]:
    return [OrderItemInput(category_id=c, quantity=q) for c, q in pairs]


# ============================================================================
# VIN Tests
# ============================================================================


class TestVin:
    def test_normalize_strips_and_uppercases(self) -> None:
        assert normalize_vin("  wvwzzz1jzxw000001 ") == VALID_VIN

    def test_normalize_none(self) -> None:
        assert normalize_vin(None) == ""

    @pytest.mark.parametrize(
        "vin",
        ["WVWZZZ1JZXW00000", "WVWZZZ1JZXW0000012", "WVWZZZ1JZXW00000O", "IVWZZZ1JZXW000001", "WVWZZZ1JZXQ000001"],
    )
    def test_invalid_vin(self, vin: str) -> None:
        assert is_valid_vin(vin) is False

    def test_valid_vin(self) -> None:
        assert is_valid_vin(VALID_VIN) is True


# ============================================================================
# Intake Tests
# ============================================================================


class TestCreateOrder:
    """Test order submission."""

    @pytest.mark.asyncio
    async def test_guest_order_gets_magic_link(
        self,
        service: OrderService,
        mock_repository: AsyncMock,
        mock_dispatcher: AsyncMock,
        assign_ids_on_flush,
    ) -> None:
        created = await service.create_order(
            Unauthenticated(),
            vin=" wvwzzz1jzxw000001",
            email="Guest@Example.com",
            items=_items(("brakes-pads", 2), ("filters-oil", 1)),
        )

        order = created.order
        assert order.vin == VALID_VIN
        assert order.status is OrderStatus.PENDING
        assert order.user_id is None
        assert order.guest_email == "Guest@example.com"
        assert [item.category_path for item in order.items] == ["Brakes / Pads", "Filters / Oil"]
        assert len(order.short_code) == 8

        assert created.magic_link_url.startswith(f"{service.settings.public_base_url}/orders/{order.id}?token=")
        token = created.magic_link_url.split("token=", 1)[1]
        assert order.magic_link_hash == hash_magic_link_token(token)
        assert order.magic_link_expires_at > datetime.now(timezone.utc)

        audit_call = mock_repository.add_audit_entry.await_args
        assert audit_call.args[1] is AuditAction.ORDER_CREATED
        assert audit_call.kwargs["actor_role"] == "SYSTEM"

        audiences = [call.kwargs["audience"] for call in mock_dispatcher.dispatch.await_args_list]
        assert audiences == [NotificationAudience.ADMIN, NotificationAudience.GUEST]
        keys = {call.kwargs["idempotency_key"] for call in mock_dispatcher.dispatch.await_args_list}
        assert keys == {
            f"{order.id}:STATUS_CHANGED:SUBMITTED:admin",
            f"{order.id}:STATUS_CHANGED:SUBMITTED:customer",
        }

    @pytest.mark.asyncio
    async def test_logged_in_order_owned_by_user(
        self,
        service: OrderService,
        mock_repository: AsyncMock,
        mock_dispatcher: AsyncMock,
        customer_principal,
        assign_ids_on_flush,
    ) -> None:
        user = User(id=customer_principal.user_id, email="jan@example.com", role=UserRole.USER)
        mock_repository.get_user.return_value = user

        created = await service.create_order(
            customer_principal, vin=VALID_VIN, email=None, items=_items(("brakes-pads", 1))
        )

        assert created.magic_link_url is None
        assert created.order.user_id == user.id
        assert created.order.magic_link_hash is None
        assert mock_dispatcher.dispatch.await_args_list[1].kwargs["audience"] is NotificationAudience.USER

    @pytest.mark.asyncio
    async def test_unknown_session_user(
        self, service: OrderService, mock_repository: AsyncMock, customer_principal
    ) -> None:
        mock_repository.get_user.return_value = None

        with pytest.raises(Unauthorized):
            await service.create_order(
                customer_principal, vin=VALID_VIN, email=None, items=_items(("brakes-pads", 1))
            )

    @pytest.mark.asyncio
    async def test_every_invalid_field_reported(
        self, service: OrderService, mock_db_session: AsyncMock
    ) -> None:
        items = [
            OrderItemInput(category_id="brakes-pads", quantity=0),
            OrderItemInput(category_id="brakes-pads", quantity=1000, note="x" * 201),
            OrderItemInput(category_id="does-not-exist", quantity=1),
        ]

        with pytest.raises(ValidationError) as exc_info:
            await service.create_order(Unauthenticated(), vin="SHORT", email="nope", items=items)

        fields = [error.field for error in exc_info.value.errors]
        assert fields == [
            "vin",
            "email",
            "items[0].quantity",
            "items[1].quantity",
            "items[1].note",
            "items[2].categoryId",
        ]
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_items(self, service: OrderService, mock_repository: AsyncMock) -> None:
        mock_repository.get_categories.return_value = {}

        with pytest.raises(ValidationError) as exc_info:
            await service.create_order(Unauthenticated(), vin=VALID_VIN, email="a@example.com", items=[])

        assert [error.field for error in exc_info.value.errors] == ["items"]

    @pytest.mark.asyncio
    async def test_short_code_collision_retried(
        self, service: OrderService, mock_db_session: AsyncMock
    ) -> None:
        collision = IntegrityError(
            "INSERT INTO order_requests ...",
            {},
            Exception('duplicate key value violates unique constraint "order_requests_short_code_key"'),
        )
        mock_db_session.flush.side_effect = [collision, None]

        created = await service.create_order(
            Unauthenticated(), vin=VALID_VIN, email="a@example.com", items=_items(("brakes-pads", 1))
        )

        assert mock_db_session.add.call_count == 2
        assert created.order is mock_db_session.add.call_args.args[0]

    @pytest.mark.asyncio
    async def test_short_code_attempts_exhausted(
        self, service: OrderService, mock_db_session: AsyncMock
    ) -> None:
        collision = IntegrityError(
            "INSERT INTO order_requests ...",
            {},
            Exception('duplicate key value violates unique constraint "order_requests_short_code_key"'),
        )
        mock_db_session.flush.side_effect = collision

        with pytest.raises(IntegrityError) as exc_info:
            await service.create_order(
                Unauthenticated(), vin=VALID_VIN, email="a@example.com", items=_items(("brakes-pads", 1))
            )

        assert exc_info.value is collision
        assert mock_db_session.add.call_count == SHORT_CODE_ATTEMPTS

    @pytest.mark.asyncio
    async def test_other_integrity_errors_propagate(
        self, service: OrderService, mock_db_session: AsyncMock
    ) -> None:
        mock_db_session.flush.side_effect = IntegrityError(
            "INSERT", {}, Exception('violates foreign key constraint "order_items_category_id_fkey"')
        )

        with pytest.raises(IntegrityError):
            await service.create_order(
                Unauthenticated(), vin=VALID_VIN, email="a@example.com", items=_items(("brakes-pads", 1))
            )
        assert mock_db_session.add.call_count == 1


# ============================================================================
# Access Tests
# ============================================================================


class TestGetOrderDetail:
    """Guests reach their order with a valid, unexpired magic link."""

    @pytest.mark.asyncio
    async def test_anonymous_without_token(self, service: OrderService) -> None:
        with pytest.raises(Unauthorized):
            await service.get_order_detail(None, None, uuid4())

    @pytest.mark.asyncio
    async def test_expired_token(self, service: OrderService, mock_repository: AsyncMock) -> None:
        order = make_order(
            magic_link_hash=hash_magic_link_token("guest-token"),
            magic_link_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        mock_repository.get_by_id.return_value = order

        with pytest.raises(Unauthorized):
            await service.get_order_detail(None, "guest-token", order.id)

    @pytest.mark.asyncio
    async def test_valid_token(self, service: OrderService, mock_repository: AsyncMock) -> None:
        order = make_order(magic_link_hash=hash_magic_link_token("guest-token"))
        mock_repository.get_by_id.return_value = order

        loaded, principal = await service.get_order_detail(None, "guest-token", order.id)

        assert loaded is order
        assert principal.order_id == order.id

    @pytest.mark.asyncio
    async def test_other_customers_order_hidden(
        self, service: OrderService, mock_repository: AsyncMock, customer_claims
    ) -> None:
        order = make_order(user_id=uuid4())
        mock_repository.get_by_id.return_value = order

        with pytest.raises(NotFound):
            await service.get_order_detail(customer_claims, None, order.id)

    @pytest.mark.asyncio
    async def test_missing_order(self, service: OrderService, mock_repository: AsyncMock, admin_claims) -> None:
        mock_repository.get_by_id.return_value = None

        with pytest.raises(NotFound):
            await service.get_order_detail(admin_claims, None, uuid4())


# ============================================================================
# Status Change Tests
# ============================================================================


class TestChangeStatus:
    """Test staff status changes."""

    @pytest.mark.asyncio
    async def test_customer_forbidden(self, service: OrderService, customer_principal) -> None:
        with pytest.raises(Forbidden):
            await service.change_status(customer_principal, uuid4(), OrderStatus.REMOVED)

    @pytest.mark.asyncio
    async def test_removed_cannot_be_paid(
        self, service: OrderService, mock_repository: AsyncMock, mock_payments: AsyncMock, admin_principal
    ) -> None:
        order = make_order(status=OrderStatus.REMOVED)
        mock_repository.get_by_id.return_value = order

        with pytest.raises(InvalidTransition):
            await service.change_status(admin_principal, order.id, OrderStatus.PAID)

        mock_payments.latest_pending.assert_not_awaited()
        service.state_machine.apply_transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restore_removed_order(
        self, service: OrderService, mock_repository: AsyncMock, admin_principal
    ) -> None:
        order = make_order(status=OrderStatus.REMOVED)
        mock_repository.get_by_id.return_value = order

        await service.change_status(admin_principal, order.id, OrderStatus.PENDING, reason="mistake")

        service.state_machine.apply_transition.assert_awaited_once_with(
            order, OrderStatus.PENDING, actor=admin_principal, reason="mistake", trigger="admin"
        )
        mock_repository.get_by_id.assert_awaited_once_with(order.id, for_update=True)

    @pytest.mark.asyncio
    async def test_mark_paid_settles_pending_payment(
        self,
        service: OrderService,
        mock_repository: AsyncMock,
        mock_payments: AsyncMock,
        admin_principal,
    ) -> None:
        order = make_order(status=OrderStatus.VALUATED)
        pending = SimpleNamespace(
            id=uuid4(), provider=PaymentProvider.P24, status=PaymentStatus.INIT, raw_payload=None
        )
        mock_repository.get_by_id.return_value = order
        mock_payments.latest_pending.return_value = pending

        await service.change_status(admin_principal, order.id, OrderStatus.PAID)

        assert pending.status is PaymentStatus.SUCCEEDED
        assert pending.raw_payload == {"settled_by": str(admin_principal.user_id)}
        mock_payments.add.assert_not_awaited()
        audit_call = mock_repository.add_audit_entry.await_args
        assert audit_call.args[1] is AuditAction.PAYMENT_CONFIRMED
        assert audit_call.kwargs["payment_id"] == str(pending.id)

    @pytest.mark.asyncio
    async def test_mark_paid_records_manual_payment(
        self,
        service: OrderService,
        mock_repository: AsyncMock,
        mock_payments: AsyncMock,
        admin_principal,
    ) -> None:
        order = make_order(status=OrderStatus.VALUATED)
        order.total_amount = Decimal("245.50")
        mock_repository.get_by_id.return_value = order
        mock_payments.latest_pending.return_value = None

        await service.change_status(admin_principal, order.id, OrderStatus.PAID)

        payment = mock_payments.add.await_args.args[0]
        assert payment.provider is PaymentProvider.MANUAL
        assert payment.status is PaymentStatus.SUCCEEDED
        assert payment.amount == Decimal("245.50")
        assert payment.order_request_id == order.id
        service.state_machine.apply_transition.assert_awaited_once()


# ============================================================================
# Listing and Linking Tests
# ============================================================================


class TestListOrders:
    @pytest.mark.asyncio
    async def test_staff_only(self, service: OrderService, guest_principal) -> None:
        with pytest.raises(Forbidden):
            await service.list_orders(guest_principal)

    @pytest.mark.asyncio
    async def test_passes_filters(
        self, service: OrderService, mock_repository: AsyncMock, admin_principal
    ) -> None:
        mock_repository.list_orders.return_value = ([], 0)

        assert await service.list_orders(admin_principal, OrderStatus.PAID, limit=5, offset=10) == ([], 0)
        mock_repository.list_orders.assert_awaited_once_with(status=OrderStatus.PAID, limit=5, offset=10)


class TestLinkGuestOrders:
    @pytest.mark.asyncio
    async def test_requires_session(self, service: OrderService) -> None:
        with pytest.raises(Unauthorized):
            await service.link_guest_orders(Unauthenticated())

    @pytest.mark.asyncio
    async def test_requires_email_claim(self, service: OrderService, customer_principal) -> None:
        principal = type(customer_principal)(user_id=customer_principal.user_id, role=UserRole.USER)

        with pytest.raises(ValidationError) as exc_info:
            await service.link_guest_orders(principal)

        assert exc_info.value.errors[0].field == "email"

    @pytest.mark.asyncio
    async def test_links_by_email(
        self, service: OrderService, mock_repository: AsyncMock, customer_principal
    ) -> None:
        mock_repository.link_guest_orders.return_value = 2

        assert await service.link_guest_orders(customer_principal) == 2
        mock_repository.link_guest_orders.assert_awaited_once_with(
            customer_principal.user_id, customer_principal.email
        )
        assert mock_repository.add_audit_entry.await_args.args[1] is AuditAction.GUEST_ORDERS_LINKED
