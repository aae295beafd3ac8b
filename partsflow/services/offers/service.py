"""
Offer management engine.

Staff attach up to three supplier offers to each order item. The cap holds
under concurrent writers: the item row is locked, a free slot is allocated,
and the (item, slot) unique constraint rejects any writer that slipped past.
Edits use an optimistic version check.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.config import Settings, get_settings
from partsflow.core.errors import (
    FieldError,
    InvalidTransition,
    LimitExceeded,
    NotFound,
    ValidationError,
    VersionConflict,
)
from partsflow.core.logging import get_logger
from partsflow.database.models.audit_log import AuditAction
from partsflow.database.models.notification import NotificationType
from partsflow.database.models.offer import MAX_OFFER_SLOTS, Offer
from partsflow.database.models.order import OrderRequest
from partsflow.services.identity.resolver import (
    Principal,
    actor_role_label,
    require_staff,
)
from partsflow.services.notifications.service import NotificationDispatcher
from partsflow.services.offers.repository import OfferRepository
from partsflow.services.orders.enums import ItemState
from partsflow.services.orders.repository import OrderRepository

logger = get_logger(__name__)

MAX_MANUFACTURER_LENGTH = 120
MAX_NOTES_LENGTH = 500


@dataclass(frozen=True)
class OfferFields:
    manufacturer: str
    unit_price: Decimal
    quantity_available: int
    notes: Optional[str] = None


def validate_offer_fields(
    manufacturer: Any,
    unit_price: Any,
    quantity_available: Any,
    notes: Any = None,
) -> OfferFields:
    """
    Normalize and check offer input.

    Raises:
        ValidationError: With one FieldError per invalid field
    """
    errors: list[FieldError] = []

    name = (manufacturer or "").strip() if isinstance(manufacturer, str) else ""
    if not name:
        errors.append(FieldError("manufacturer", "Manufacturer is required"))
    elif len(name) > MAX_MANUFACTURER_LENGTH:
        errors.append(
            FieldError(
                "manufacturer",
                f"Manufacturer must be at most {MAX_MANUFACTURER_LENGTH} characters",
            )
        )

    price: Optional[Decimal] = None
    try:
        price = Decimal(str(unit_price))
        if not price.is_finite() or price < 0:
            raise InvalidOperation
    except (InvalidOperation, ValueError, TypeError):
        errors.append(FieldError("unitPrice", "Unit price must be a number >= 0"))

    if (
        isinstance(quantity_available, bool)
        or not isinstance(quantity_available, int)
        or quantity_available < 0
    ):
        errors.append(FieldError("quantityAvailable", "Quantity must be an integer >= 0"))

    cleaned_notes = notes.strip() if isinstance(notes, str) and notes.strip() else None
    if cleaned_notes and len(cleaned_notes) > MAX_NOTES_LENGTH:
        errors.append(
            FieldError("notes", f"Notes must be at most {MAX_NOTES_LENGTH} characters")
        )

    if errors:
        raise ValidationError("Offer is invalid", errors=errors)

    return OfferFields(
        manufacturer=name,
        unit_price=price.quantize(Decimal("0.01")),
        quantity_available=quantity_available,
        notes=cleaned_notes,
    )


def _offer_template_data(offer: Offer) -> dict[str, Any]:
    return {
        "offer": {
            "manufacturer": offer.manufacturer,
            "unit_price": offer.unit_price,
            "quantity_available": offer.quantity_available,
        }
    }


class OffersService:
    """Staff-only offer add, edit and delete."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
        repository: Optional[OfferRepository] = None,
        orders: Optional[OrderRepository] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.repository = repository or OfferRepository(db)
        self.orders = orders or OrderRepository(db)
        self.dispatcher = dispatcher or NotificationDispatcher(db, settings=self.settings)

    @property
    def offer_cap(self) -> int:
        return min(self.settings.shop.max_offers_per_item, MAX_OFFER_SLOTS)

    async def _order_accepting_offers(self, order_id: uuid.UUID) -> OrderRequest:
        order = await self.repository.get_order(order_id)
        if order is None:
            raise NotFound("Order not found", resource="order", order_id=str(order_id))
        if not order.status.accepts_offers:
            raise InvalidTransition(
                f"Offers cannot be changed on a {order.status.value} order",
                current_status=order.status,
                order_id=str(order.id),
            )
        return order

    async def add_offer(
        self,
        principal: Principal,
        order_item_id: uuid.UUID,
        manufacturer: Any,
        unit_price: Any,
        quantity_available: Any,
        notes: Any = None,
    ) -> Offer:
        """
        Attach a new offer to an order item.

        Raises:
            ValidationError: If a field is invalid
            NotFound: If the item does not exist
            InvalidTransition: If the order is PAID or REMOVED
            LimitExceeded: If the item already carries the maximum number of offers
        """
        staff = require_staff(principal)
        fields = validate_offer_fields(manufacturer, unit_price, quantity_available, notes)

        async with self.repository.locked_item(order_item_id) as item:
            if item is None:
                raise NotFound(
                    "Order item not found",
                    resource="order_item",
                    order_item_id=str(order_item_id),
                )
            order = await self._order_accepting_offers(item.order_request_id)

            offer = await self._insert_into_free_slot(item.id, fields)
            if item.state is ItemState.REQUESTED:
                item.state = ItemState.VALUATED

        await self.orders.add_audit_entry(
            order.id,
            AuditAction.OFFER_ADDED,
            actor_id=staff.user_id,
            actor_role=actor_role_label(staff),
            offer_id=str(offer.id),
            order_item_id=str(order_item_id),
            slot=offer.slot,
        )
        logger.info(
            "Offer added",
            order_id=str(order.id),
            order_item_id=str(order_item_id),
            offer_id=str(offer.id),
            slot=offer.slot,
        )

        await self.dispatcher.dispatch(
            NotificationType.OFFER_ADDED,
            order,
            staff,
            title="New offer available",
            body=f"A new offer from {offer.manufacturer} was added to order {order.short_code}.",
            idempotency_key=f"offer:{offer.id}:added",
            template="offer_added",
            template_data=_offer_template_data(offer),
        )
        return offer

    async def _insert_into_free_slot(self, item_id: uuid.UUID, fields: OfferFields) -> Offer:
        cap = self.offer_cap
        for attempt in range(2):
            used = await self.repository.used_slots(item_id)
            free = [slot for slot in range(1, cap + 1) if slot not in used]
            if not free:
                raise LimitExceeded(
                    f"An item can have at most {cap} offers",
                    limit=cap,
                    order_item_id=str(item_id),
                )
            offer = Offer(
                order_item_id=item_id,
                manufacturer=fields.manufacturer,
                unit_price=fields.unit_price,
                quantity_available=fields.quantity_available,
                notes=fields.notes,
                version=1,
                slot=free[0],
            )
            try:
                return await self.repository.insert_offer(offer)
            except IntegrityError:
                logger.warning(
                    "Offer slot taken concurrently",
                    order_item_id=str(item_id),
                    slot=free[0],
                    attempt=attempt + 1,
                )
        raise LimitExceeded(
            f"An item can have at most {cap} offers",
            limit=cap,
            order_item_id=str(item_id),
        )

    async def edit_offer(
        self,
        principal: Principal,
        offer_id: uuid.UUID,
        expected_version: int,
        manufacturer: Any,
        unit_price: Any,
        quantity_available: Any,
        notes: Any = None,
    ) -> Offer:
        """
        Update an offer if nobody edited it since ``expected_version``.

        Raises:
            NotFound: If the offer does not exist
            VersionConflict: If the stored version differs
        """
        staff = require_staff(principal)
        fields = validate_offer_fields(manufacturer, unit_price, quantity_available, notes)

        offer = await self.repository.get_offer(offer_id)
        if offer is None:
            raise NotFound("Offer not found", resource="offer", offer_id=str(offer_id))

        item = await self._item_for(offer)
        order = await self._order_accepting_offers(item.order_request_id)

        new_version = await self.repository.update_offer(
            offer,
            expected_version,
            {
                "manufacturer": fields.manufacturer,
                "unit_price": fields.unit_price,
                "quantity_available": fields.quantity_available,
                "notes": fields.notes,
            },
        )
        if new_version is None:
            current = await self.repository.current_version(offer_id)
            if current is None:
                raise NotFound("Offer not found", resource="offer", offer_id=str(offer_id))
            logger.info(
                "Offer edit rejected on stale version",
                offer_id=str(offer_id),
                expected_version=expected_version,
                current_version=current,
            )
            raise VersionConflict(
                "Offer was modified by someone else",
                expected_version=expected_version,
                current_version=current,
                offer_id=str(offer_id),
            )

        await self.orders.add_audit_entry(
            order.id,
            AuditAction.OFFER_UPDATED,
            actor_id=staff.user_id,
            actor_role=actor_role_label(staff),
            offer_id=str(offer_id),
            version=new_version,
        )
        logger.info("Offer updated", offer_id=str(offer_id), version=new_version)

        await self.dispatcher.dispatch(
            NotificationType.OFFER_UPDATED,
            order,
            staff,
            title="Offer updated",
            body=f"An offer from {offer.manufacturer} on order {order.short_code} was updated.",
            idempotency_key=f"offer:{offer_id}:v{new_version}",
            template="offer_updated",
            template_data=_offer_template_data(offer),
        )
        return offer

    async def delete_offer(self, principal: Principal, offer_id: uuid.UUID) -> None:
        """
        Remove an offer and any chosen-offer rows referencing it.

        The item falls back to REQUESTED when its last offer goes. The order
        status is left alone.
        """
        staff = require_staff(principal)

        offer = await self.repository.get_offer(offer_id)
        if offer is None:
            raise NotFound("Offer not found", resource="offer", offer_id=str(offer_id))

        item = await self._item_for(offer)
        order = await self._order_accepting_offers(item.order_request_id)
        cleared = await self.repository.delete_offer(offer)
        remaining = await self.repository.count_offers(item.id)
        if remaining == 0 and item.state is ItemState.VALUATED:
            item.state = ItemState.REQUESTED

        self._drop_from_draft(order, item.id, offer_id)

        await self.orders.add_audit_entry(
            order.id,
            AuditAction.OFFER_DELETED,
            actor_id=staff.user_id,
            actor_role=actor_role_label(staff),
            offer_id=str(offer_id),
            order_item_id=str(item.id),
            chosen_cleared=cleared,
        )
        logger.info(
            "Offer deleted",
            offer_id=str(offer_id),
            order_item_id=str(item.id),
            remaining=remaining,
        )

    async def _item_for(self, offer: Offer):
        """Lock the offer's item; the row lock lasts until the transaction ends."""
        async with self.repository.locked_item(offer.order_item_id) as item:
            if item is None:
                raise NotFound(
                    "Order item not found",
                    resource="order_item",
                    order_item_id=str(offer.order_item_id),
                )
            return item

    @staticmethod
    def _drop_from_draft(order: OrderRequest, item_id: uuid.UUID, offer_id: uuid.UUID) -> None:
        draft = dict(order.selection_draft or {})
        entry = draft.get(str(item_id))
        if isinstance(entry, dict) and entry.get("offerId") == str(offer_id):
            draft[str(item_id)] = {"offerId": None, "include": False}
            order.selection_draft = draft

