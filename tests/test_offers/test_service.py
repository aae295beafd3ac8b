"""
Test suite for the offer management engine.

Covers the three-offer cap under concurrent writers, optimistic version
checks on edit, deletion side effects and offer field validation.
"""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from partsflow.core.errors import (
    Forbidden,
    InvalidTransition,
    LimitExceeded,
    NotFound,
    ValidationError,
    VersionConflict,
)
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.notification import NotificationType
from partsflow.services.offers.service import OffersService, validate_offer_fields
from partsflow.services.orders.enums import ItemState, OrderStatus
from tests.factories import make_item, make_offer, make_order


class InMemoryOfferRepository:
    """
    Offer storage enforcing the (item, slot) unique constraint.

    With ``serialize`` the item lock is honoured; without it writers race
    and only the constraint protects the cap.
    """

    def __init__(self, order, item, serialize: bool = True):
        self.order = order
        self.item = item
        self.offers: list = []
        self.serialize = serialize
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def locked_item(self, item_id: UUID):
        found = self.item if item_id == self.item.id else None
        if self.serialize:
            async with self._lock:
                yield found
        else:
            yield found

    async def get_order(self, order_id: UUID):
        return self.order if order_id == self.order.id else None

    async def used_slots(self, item_id: UUID) -> set[int]:
        await asyncio.sleep(0)
        return {offer.slot for offer in self.offers if offer.order_item_id == item_id}

    async def insert_offer(self, offer):
        await asyncio.sleep(0)
        if any(o.order_item_id == offer.order_item_id and o.slot == offer.slot for o in self.offers):
            raise IntegrityError(
                "INSERT INTO offers ...",
                {},
                Exception('duplicate key value violates unique constraint "uq_offers_item_slot"'),
            )
        offer.id = uuid4()
        self.offers.append(offer)
        return offer


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def item():
    return make_item(quantity=2)


@pytest.fixture
def order(item):
    return make_order(status=OrderStatus.PENDING, items=[item])


@pytest.fixture
def mock_orders() -> AsyncMock:
    return AsyncMock()


def _service(mock_db_session, mock_dispatcher, mock_orders, settings, repository) -> OffersService:
    return OffersService(
        mock_db_session,
        dispatcher=mock_dispatcher,
        settings=settings,
        repository=repository,
        orders=mock_orders,
    )


def _add(service: OffersService, principal, item_id: UUID, price: str = "49.90"):
    return service.add_offer(
        principal,
        item_id,
        manufacturer="Bosch",
        unit_price=price,
        quantity_available=4,
        notes=None,
    )


# ============================================================================
# Offer Cap Tests
# ============================================================================


class TestOfferCap:
    """An item never carries more than three offers."""

    @pytest.mark.asyncio
    async def test_fourth_offer_rejected(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, order, item, admin_principal
    ) -> None:
        repository = InMemoryOfferRepository(order, item)
        service = _service(mock_db_session, mock_dispatcher, mock_orders, settings, repository)

        offers = [await _add(service, admin_principal, item.id) for _ in range(3)]

        with pytest.raises(LimitExceeded) as exc_info:
            await _add(service, admin_principal, item.id)

        assert [offer.slot for offer in offers] == [1, 2, 3]
        assert len(repository.offers) == 3
        assert exc_info.value.details() == {"limit": 3}

    @pytest.mark.asyncio
    async def test_concurrent_adds_with_item_lock(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, order, item, admin_principal
    ) -> None:
        repository = InMemoryOfferRepository(order, item, serialize=True)
        service = _service(mock_db_session, mock_dispatcher, mock_orders, settings, repository)

        results = await asyncio.gather(
            *(_add(service, admin_principal, item.id, price=f"{10 + n}.00") for n in range(5)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 3
        assert len(failures) == 2
        assert all(isinstance(f, LimitExceeded) for f in failures)
        assert sorted(offer.slot for offer in repository.offers) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_unique_slot_holds_without_lock(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, order, item, admin_principal
    ) -> None:
        repository = InMemoryOfferRepository(order, item, serialize=False)
        service = _service(mock_db_session, mock_dispatcher, mock_orders, settings, repository)

        results = await asyncio.gather(
            *(_add(service, admin_principal, item.id) for _ in range(5)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(f, LimitExceeded) for f in failures)
        assert 1 <= len(repository.offers) <= 3
        assert len({offer.slot for offer in repository.offers}) == len(repository.offers)

    @pytest.mark.asyncio
    async def test_cap_follows_shop_setting(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, order, item, admin_principal
    ) -> None:
        shop_settings = settings.model_copy(
            update={"shop": settings.shop.model_copy(update={"max_offers_per_item": 1})}
        )
        repository = InMemoryOfferRepository(order, item)
        service = _service(mock_db_session, mock_dispatcher, mock_orders, shop_settings, repository)

        await _add(service, admin_principal, item.id)

        with pytest.raises(LimitExceeded):
            await _add(service, admin_principal, item.id)


class TestAddOffer:
    """Test offer creation side effects and guards."""

    @pytest.mark.asyncio
    async def test_first_offer_valuates_item_and_notifies(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, order, item, admin_principal
    ) -> None:
        repository = InMemoryOfferRepository(order, item)
        service = _service(mock_db_session, mock_dispatcher, mock_orders, settings, repository)

        offer = await _add(service, admin_principal, item.id)

        assert item.state is ItemState.VALUATED
        assert offer.unit_price == Decimal("49.90")
        assert offer.version == 1
        assert mock_orders.add_audit_entry.await_args.args[1] is AuditAction.OFFER_ADDED

        dispatch_call = mock_dispatcher.dispatch.await_args
        assert dispatch_call.args[0] is NotificationType.OFFER_ADDED
        assert dispatch_call.kwargs["idempotency_key"] == f"offer:{offer.id}:added"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [OrderStatus.PAID, OrderStatus.REMOVED])
    async def test_closed_orders_reject_offers(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, item, admin_principal, status
    ) -> None:
        order = make_order(status=status, items=[item])
        repository = InMemoryOfferRepository(order, item)
        service = _service(mock_db_session, mock_dispatcher, mock_orders, settings, repository)

        with pytest.raises(InvalidTransition):
            await _add(service, admin_principal, item.id)

        assert repository.offers == []
        mock_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_item(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, order, item, admin_principal
    ) -> None:
        service = _service(
            mock_db_session, mock_dispatcher, mock_orders, settings, InMemoryOfferRepository(order, item)
        )

        with pytest.raises(NotFound):
            await _add(service, admin_principal, uuid4())

    @pytest.mark.asyncio
    async def test_customer_cannot_add(
        self, mock_db_session, mock_dispatcher, mock_orders, settings, order, item, customer_principal
    ) -> None:
        service = _service(
            mock_db_session, mock_dispatcher, mock_orders, settings, InMemoryOfferRepository(order, item)
        )

        with pytest.raises(Forbidden):
            await _add(service, customer_principal, item.id)


# ============================================================================
# Edit and Delete Tests
# ============================================================================


@pytest.fixture
def mock_repository(order, item) -> AsyncMock:
    repository = AsyncMock()
    repository.get_order = AsyncMock(return_value=order)

    @asynccontextmanager
    async def locked_item(item_id):
        yield item if item_id == item.id else None

    repository.locked_item = locked_item
    return repository


@pytest.fixture
def offers_service(mock_db_session, mock_dispatcher, mock_orders, settings, mock_repository) -> OffersService:
    return _service(mock_db_session, mock_dispatcher, mock_orders, settings, mock_repository)


class TestEditOffer:
    @pytest.mark.asyncio
    async def test_stale_version_conflicts(
        self, offers_service: OffersService, mock_repository: AsyncMock, mock_dispatcher, item, admin_principal
    ) -> None:
        offer = make_offer(item_id=item.id, version=3)
        mock_repository.get_offer.return_value = offer
        mock_repository.update_offer.return_value = None
        mock_repository.current_version.return_value = 3

        with pytest.raises(VersionConflict) as exc_info:
            await offers_service.edit_offer(admin_principal, offer.id, 2, "Bosch", "12.00", 3)

        assert exc_info.value.details() == {"expected_version": 2, "current_version": 3}
        mock_dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_edit_bumps_version(
        self, offers_service: OffersService, mock_repository: AsyncMock, mock_dispatcher, item, admin_principal
    ) -> None:
        offer = make_offer(item_id=item.id, version=1)
        mock_repository.get_offer.return_value = offer
        mock_repository.update_offer.return_value = 2

        await offers_service.edit_offer(admin_principal, offer.id, 1, " ATE ", "15.5", 2, notes="  ")

        expected_version, values = mock_repository.update_offer.await_args.args[1:]
        assert expected_version == 1
        assert values == {
            "manufacturer": "ATE",
            "unit_price": Decimal("15.50"),
            "quantity_available": 2,
            "notes": None,
        }
        assert mock_dispatcher.dispatch.await_args.kwargs["idempotency_key"] == f"offer:{offer.id}:v2"

    @pytest.mark.asyncio
    async def test_deleted_during_edit(
        self, offers_service: OffersService, mock_repository: AsyncMock, item, admin_principal
    ) -> None:
        offer = make_offer(item_id=item.id)
        mock_repository.get_offer.return_value = offer
        mock_repository.update_offer.return_value = None
        mock_repository.current_version.return_value = None

        with pytest.raises(NotFound):
            await offers_service.edit_offer(admin_principal, offer.id, 1, "Bosch", "1.00", 1)

    @pytest.mark.asyncio
    async def test_missing_offer(self, offers_service: OffersService, mock_repository: AsyncMock, admin_principal) -> None:
        mock_repository.get_offer.return_value = None

        with pytest.raises(NotFound):
            await offers_service.edit_offer(admin_principal, uuid4(), 1, "Bosch", "1.00", 1)


class TestDeleteOffer:
    @pytest.mark.asyncio
    async def test_last_offer_returns_item_to_requested(
        self, offers_service: OffersService, mock_repository: AsyncMock, mock_orders, order, item, admin_principal
    ) -> None:
        offer = make_offer(item_id=item.id)
        item.state = ItemState.VALUATED
        order.selection_draft = {str(item.id): {"offerId": str(offer.id), "include": True}}
        mock_repository.get_offer.return_value = offer
        mock_repository.delete_offer.return_value = 1
        mock_repository.count_offers.return_value = 0

        await offers_service.delete_offer(admin_principal, offer.id)

        assert item.state is ItemState.REQUESTED
        assert order.selection_draft[str(item.id)] == {"offerId": None, "include": False}
        audit_call = mock_orders.add_audit_entry.await_args
        assert audit_call.args[1] is AuditAction.OFFER_DELETED
        assert audit_call.kwargs["chosen_cleared"] == 1

    @pytest.mark.asyncio
    async def test_other_selection_kept(
        self, offers_service: OffersService, mock_repository: AsyncMock, order, item, admin_principal
    ) -> None:
        offer = make_offer(item_id=item.id)
        kept = str(uuid4())
        item.state = ItemState.VALUATED
        order.selection_draft = {str(item.id): {"offerId": kept, "include": True}}
        mock_repository.get_offer.return_value = offer
        mock_repository.delete_offer.return_value = 0
        mock_repository.count_offers.return_value = 1

        await offers_service.delete_offer(admin_principal, offer.id)

        assert item.state is ItemState.VALUATED
        assert order.selection_draft[str(item.id)]["offerId"] == kept


# ============================================================================
# Field Validation Tests
# ============================================================================


class TestValidateOfferFields:
    def test_normalizes_values(self) -> None:
        fields = validate_offer_fields("  Bosch ", "10.5", 0, "  fits 2019+ ")

        assert fields.manufacturer == "Bosch"
        assert fields.unit_price == Decimal("10.50")
        assert fields.quantity_available == 0
        assert fields.notes == "fits 2019+"

    @pytest.mark.parametrize(
        "manufacturer,unit_price,quantity,notes,field",
        [
            ("", "1.00", 1, None, "manufacturer"),
            ("x" * 121, "1.00", 1, None, "manufacturer"),
            ("Bosch", "-0.01", 1, None, "unitPrice"),
            ("Bosch", "abc", 1, None, "unitPrice"),
            ("Bosch", "NaN", 1, None, "unitPrice"),
            ("Bosch", "1.00", -1, None, "quantityAvailable"),
            ("Bosch", "1.00", True, None, "quantityAvailable"),
            ("Bosch", "1.00", "3", None, "quantityAvailable"),
            ("Bosch", "1.00", 1, "n" * 501, "notes"),
        ],
    )
    def test_invalid_field(self, manufacturer, unit_price, quantity, notes, field: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_offer_fields(manufacturer, unit_price, quantity, notes)

        assert [error.field for error in exc_info.value.errors] == [field]

    def test_all_errors_collected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_offer_fields(None, None, None)

        assert {error.field for error in exc_info.value.errors} == {
            "manufacturer",
            "unitPrice",
            "quantityAvailable",
        }
