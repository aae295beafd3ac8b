"""
Principal resolution and order access rules.

Every entry point resolves the caller to exactly one principal:

- AuthenticatedPrincipal: a verified session (user, staff or admin)
- GuestPrincipal: a valid, unexpired magic-link token for one order
- Unauthenticated: anything else

Resolution is pure. Access checks raise typed errors; ownership mismatches
surface as NotFound so callers cannot discover other customers' orders.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import UUID

from partsflow.core.errors import Forbidden, NotFound, Unauthorized
from partsflow.core.logging import get_logger
from partsflow.core.security import SessionClaims, magic_link_matches
from partsflow.database.models.notification import NotificationAudience
from partsflow.database.models.order import OrderRequest
from partsflow.database.models.user import UserRole

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    user_id: UUID
    role: UserRole
    email: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff

    @property
    def audience(self) -> NotificationAudience:
        if self.role is UserRole.ADMIN:
            return NotificationAudience.ADMIN
        if self.role is UserRole.STAFF:
            return NotificationAudience.STAFF
        return NotificationAudience.USER

    @property
    def actor_id(self) -> Optional[UUID]:
        return self.user_id


@dataclass(frozen=True)
class GuestPrincipal:
    order_id: UUID
    token_expires_at: datetime

    is_staff = False
    audience = NotificationAudience.GUEST
    actor_id = None


@dataclass(frozen=True)
class Unauthenticated:
    is_staff = False
    actor_id = None


Principal = Union[AuthenticatedPrincipal, GuestPrincipal, Unauthenticated]


def resolve_principal(
    session: Optional[SessionClaims],
    token: Optional[str] = None,
    order: Optional[OrderRequest] = None,
    now: Optional[datetime] = None,
) -> Principal:
    """
    Resolve the acting principal for a request.

    A session always wins over a magic-link token. A token resolves to a
    guest only when it matches the given order and has not expired.

    Args:
        session: Verified session claims, or None for anonymous callers
        token: Magic-link token from the query string
        order: The order the token is presented for
        now: Clock override for tests
    """
    if session is not None:
        try:
            role = UserRole.from_string(session.role)
        except ValueError:
            logger.warning("Session carries unknown role", role=session.role)
            return Unauthenticated()
        return AuthenticatedPrincipal(
            user_id=session.user_id,
            role=role,
            email=session.email,
        )

    if not token or order is None:
        return Unauthenticated()

    if not magic_link_matches(token, order.magic_link_hash):
        logger.info("Magic link token mismatch", order_id=str(order.id))
        return Unauthenticated()

    now = now or datetime.now(timezone.utc)
    expires_at = order.magic_link_expires_at
    if expires_at is None or now >= expires_at:
        logger.info("Magic link token expired", order_id=str(order.id))
        return Unauthenticated()

    return GuestPrincipal(order_id=order.id, token_expires_at=expires_at)


def ensure_order_access(principal: Principal, order: OrderRequest) -> None:
    """
    Check that ``principal`` may see ``order``.

    Raises:
        Unauthorized: If the caller is not identified
        NotFound: If the caller does not own the order
    """
    if isinstance(principal, Unauthenticated):
        raise Unauthorized("Authentication required", order_id=str(order.id))

    if principal.is_staff:
        return

    if isinstance(principal, AuthenticatedPrincipal):
        if order.user_id is not None and order.user_id == principal.user_id:
            return
    elif isinstance(principal, GuestPrincipal):
        if principal.order_id == order.id:
            return

    logger.info(
        "Order access denied",
        order_id=str(order.id),
        principal=type(principal).__name__,
    )
    raise NotFound("Order not found", resource="order", order_id=str(order.id))


def require_staff(principal: Principal) -> AuthenticatedPrincipal:
    """
    Require an ADMIN or STAFF session.

    Raises:
        Unauthorized: If the caller is not identified
        Forbidden: If the caller is a customer or guest
    """
    if isinstance(principal, Unauthenticated):
        raise Unauthorized("Authentication required")
    if not isinstance(principal, AuthenticatedPrincipal) or not principal.is_staff:
        raise Forbidden("Staff role required")
    return principal


def require_authenticated(principal: Principal) -> AuthenticatedPrincipal:
    if not isinstance(principal, AuthenticatedPrincipal):
        raise Unauthorized("Authentication required")
    return principal


def actor_role_label(principal: Principal) -> str:
    """Role name recorded in the audit log."""
    if isinstance(principal, AuthenticatedPrincipal):
        return principal.role.value
    if isinstance(principal, GuestPrincipal):
        return "GUEST"
    return "SYSTEM"
