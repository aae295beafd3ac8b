"""
FastAPI dependencies for sessions, principals and services.

The bearer token is optional everywhere: guests reach their order with the
magic-link ``?token=`` instead, and the services decide what each principal
may do.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from partsflow.core.config import get_settings
from partsflow.core.logging import get_logger, set_user_context
from partsflow.core.security import SessionClaims, decode_session_token
from partsflow.database.connection import get_db
from partsflow.services.checkout.service import CheckoutService
from partsflow.services.comments.service import CommentService
from partsflow.services.identity.resolver import (
    AuthenticatedPrincipal,
    Principal,
    require_staff,
    resolve_principal,
)
from partsflow.services.notifications.service import (
    NotificationDispatcher,
    NotificationService,
)
from partsflow.services.offers.service import OffersService
from partsflow.services.orders.repository import OrderRepository
from partsflow.services.orders.service import OrderService
from partsflow.services.payments.service import PaymentService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

limiter = Limiter(key_func=get_remote_address)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_session_claims(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Optional[SessionClaims]:
    """
    Decode the bearer session, if one was sent.

    Raises:
        Unauthorized: If a token was sent but is invalid or expired
    """
    if credentials is None:
        return None
    claims = decode_session_token(credentials.credentials)
    set_user_context(str(claims.user_id))
    return claims


OptionalSessionClaims = Annotated[Optional[SessionClaims], Depends(get_session_claims)]

MagicLinkToken = Annotated[
    Optional[str],
    Query(description="Guest magic-link token", max_length=128),
]


async def get_principal(
    claims: OptionalSessionClaims,
    db: DatabaseSession,
    token: MagicLinkToken = None,
    order_id: Annotated[Optional[UUID], Query(alias="orderId")] = None,
) -> Principal:
    """
    Resolve the caller for endpoints that are not scoped to one order path.

    A guest is recognised only when both ``token`` and ``orderId`` are given
    and the token matches that order.
    """
    order = None
    if claims is None and token and order_id is not None:
        order = await OrderRepository(db).get_by_id(order_id)
    return resolve_principal(claims, token=token, order=order)


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]


async def get_staff_principal(claims: OptionalSessionClaims) -> AuthenticatedPrincipal:
    """
    Raises:
        Unauthorized: Without a session
        Forbidden: For customer sessions
    """
    return require_staff(resolve_principal(claims))


StaffPrincipal = Annotated[AuthenticatedPrincipal, Depends(get_staff_principal)]


def get_dispatcher(db: DatabaseSession) -> NotificationDispatcher:
    return NotificationDispatcher(db, settings=get_settings())


Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]


def get_order_service(db: DatabaseSession, dispatcher: Dispatcher) -> OrderService:
    return OrderService(db, dispatcher=dispatcher)


def get_offers_service(db: DatabaseSession, dispatcher: Dispatcher) -> OffersService:
    return OffersService(db, dispatcher=dispatcher)


def get_checkout_service(db: DatabaseSession) -> CheckoutService:
    return CheckoutService(db)


def get_payment_service(db: DatabaseSession, dispatcher: Dispatcher) -> PaymentService:
    return PaymentService(db, dispatcher=dispatcher)


def get_comment_service(db: DatabaseSession, dispatcher: Dispatcher) -> CommentService:
    return CommentService(db, dispatcher=dispatcher)


def get_notification_service(db: DatabaseSession) -> NotificationService:
    return NotificationService(db)


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
OffersServiceDep = Annotated[OffersService, Depends(get_offers_service)]
CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
CommentServiceDep = Annotated[CommentService, Depends(get_comment_service)]
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
