"""
Tests for principal resolution, order access and session tokens.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from partsflow.core.errors import Forbidden, NotFound, Unauthorized
from partsflow.core.security import (
    SessionClaims,
    create_session_token,
    decode_session_token,
    generate_short_code,
    hash_magic_link_token,
    magic_link_matches,
)
from partsflow.database.models.user import UserRole
from partsflow.services.identity.resolver import (
    AuthenticatedPrincipal,
    GuestPrincipal,
    Unauthenticated,
    actor_role_label,
    ensure_order_access,
    require_authenticated,
    require_staff,
    resolve_principal,
)
from tests.factories import make_order

TOKEN = "magic-token-value"


@pytest.fixture
def guest_order():
    return make_order(magic_link_hash=hash_magic_link_token(TOKEN))


# ============================================================================
# Resolution Tests
# ============================================================================


class TestResolvePrincipal:
    def test_session_wins_over_token(self, guest_order, customer_claims) -> None:
        principal = resolve_principal(customer_claims, token=TOKEN, order=guest_order)

        assert isinstance(principal, AuthenticatedPrincipal)
        assert principal.role is UserRole.USER
        assert principal.user_id == customer_claims.user_id

    def test_unknown_role_is_unauthenticated(self) -> None:
        claims = SessionClaims(user_id=uuid4(), role="SUPERUSER")

        assert isinstance(resolve_principal(claims), Unauthenticated)

    def test_valid_token(self, guest_order) -> None:
        principal = resolve_principal(None, token=TOKEN, order=guest_order)

        assert isinstance(principal, GuestPrincipal)
        assert principal.order_id == guest_order.id
        assert principal.token_expires_at == guest_order.magic_link_expires_at

    def test_wrong_token(self, guest_order) -> None:
        assert isinstance(resolve_principal(None, token="other", order=guest_order), Unauthenticated)

    def test_expired_token(self, guest_order) -> None:
        later = guest_order.magic_link_expires_at + timedelta(seconds=1)

        principal = resolve_principal(None, token=TOKEN, order=guest_order, now=later)

        assert isinstance(principal, Unauthenticated)

    def test_expiry_instant_is_exclusive(self, guest_order) -> None:
        principal = resolve_principal(
            None, token=TOKEN, order=guest_order, now=guest_order.magic_link_expires_at
        )

        assert isinstance(principal, Unauthenticated)

    def test_token_without_order(self) -> None:
        assert isinstance(resolve_principal(None, token=TOKEN), Unauthenticated)

    def test_nothing_presented(self) -> None:
        assert isinstance(resolve_principal(None), Unauthenticated)


# ============================================================================
# Access Tests
# ============================================================================


class TestEnsureOrderAccess:
    def test_staff_sees_everything(self, admin_principal) -> None:
        ensure_order_access(admin_principal, make_order(user_id=uuid4()))

    def test_owner(self, customer_principal) -> None:
        ensure_order_access(customer_principal, make_order(user_id=customer_principal.user_id))

    def test_other_customer_gets_not_found(self, customer_principal) -> None:
        with pytest.raises(NotFound):
            ensure_order_access(customer_principal, make_order(user_id=uuid4()))

    def test_customer_cannot_see_guest_order(self, customer_principal) -> None:
        with pytest.raises(NotFound):
            ensure_order_access(customer_principal, make_order(user_id=None))

    def test_guest_for_own_order(self) -> None:
        order = make_order()
        guest = GuestPrincipal(order_id=order.id, token_expires_at=order.magic_link_expires_at)

        ensure_order_access(guest, order)

    def test_guest_for_other_order(self, guest_principal) -> None:
        with pytest.raises(NotFound):
            ensure_order_access(guest_principal, make_order())

    def test_anonymous(self) -> None:
        with pytest.raises(Unauthorized):
            ensure_order_access(Unauthenticated(), make_order())


class TestRoleGuards:
    def test_require_staff(self, admin_principal, customer_principal, guest_principal) -> None:
        assert require_staff(admin_principal) is admin_principal
        staff = AuthenticatedPrincipal(user_id=uuid4(), role=UserRole.STAFF)
        assert require_staff(staff) is staff

        with pytest.raises(Forbidden):
            require_staff(customer_principal)
        with pytest.raises(Forbidden):
            require_staff(guest_principal)
        with pytest.raises(Unauthorized):
            require_staff(Unauthenticated())

    def test_require_authenticated(self, customer_principal, guest_principal) -> None:
        assert require_authenticated(customer_principal) is customer_principal

        with pytest.raises(Unauthorized):
            require_authenticated(guest_principal)

    def test_actor_role_label(self, admin_principal, guest_principal) -> None:
        assert actor_role_label(admin_principal) == "ADMIN"
        assert actor_role_label(guest_principal) == "GUEST"
        assert actor_role_label(Unauthenticated()) == "SYSTEM"


# ============================================================================
# Token Tests
# ============================================================================


class TestSessionTokens:
    def test_round_trip(self) -> None:
        user_id = uuid4()

        claims = decode_session_token(create_session_token(user_id, "staff", "s@example.com"))

        assert claims == SessionClaims(user_id=user_id, role="STAFF", email="s@example.com")

    def test_expired(self) -> None:
        token = create_session_token(uuid4(), "USER", expires_delta=timedelta(seconds=-5))

        with pytest.raises(Unauthorized):
            decode_session_token(token)

    def test_garbage(self) -> None:
        with pytest.raises(Unauthorized):
            decode_session_token("not-a-jwt")


class TestMagicLinks:
    def test_matches_only_its_hash(self) -> None:
        stored = hash_magic_link_token(TOKEN)

        assert magic_link_matches(TOKEN, stored)
        assert not magic_link_matches(TOKEN.upper(), stored)
        assert not magic_link_matches(TOKEN, None)

    def test_short_code_shape(self) -> None:
        code = generate_short_code()

        assert len(code) == 8
        assert code.isalnum() and code == code.upper()
