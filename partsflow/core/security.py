"""
Security utilities for session tokens, magic links and webhook signatures.

Sessions are issued by the external auth provider as signed JWTs; this
module only verifies them. Magic-link tokens are random, shown once to the
guest, and stored as a SHA-256 digest.
"""

import hashlib
import hmac
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from partsflow.core.config import get_settings
from partsflow.core.errors import Unauthorized
from partsflow.core.logging import get_logger

logger = get_logger(__name__)

SHORT_CODE_ALPHABET = string.ascii_uppercase + string.digits
SHORT_CODE_LENGTH = 8


@dataclass(frozen=True)
class SessionClaims:
    """Identity asserted by a verified session token."""

    user_id: UUID
    role: str
    email: Optional[str] = None


def create_session_token(
    user_id: UUID,
    role: str,
    email: Optional[str] = None,
    expires_delta: timedelta = timedelta(hours=1),
) -> str:
    """
    Sign a session token with the shared secret.

    Used by local tooling and tests; production sessions come from the
    auth provider using the same secret and claim layout.
    """
    settings = get_settings()
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> SessionClaims:
    """
    Decode and validate a session JWT.

    Raises:
        Unauthorized: If the token is expired, malformed or missing claims
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.info("Session token expired")
        raise Unauthorized("Session has expired") from e
    except JWTError as e:
        logger.warning("Invalid session token", error_type=type(e).__name__)
        raise Unauthorized("Invalid session token") from e

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not role:
        logger.warning("Session token missing claims", has_sub=bool(subject))
        raise Unauthorized("Invalid session token")

    try:
        user_id = UUID(subject)
    except ValueError as e:
        raise Unauthorized("Invalid session token") from e

    return SessionClaims(user_id=user_id, role=str(role).upper(), email=payload.get("email"))


def generate_magic_link_token() -> str:
    return secrets.token_urlsafe(32)


def hash_magic_link_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def magic_link_matches(token: str, stored_hash: Optional[str]) -> bool:
    """Constant-time comparison of a presented token against its stored digest."""
    if not token or not stored_hash:
        return False
    return hmac.compare_digest(hash_magic_link_token(token), stored_hash)


def magic_link_expiry(now: Optional[datetime] = None) -> datetime:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    return now + timedelta(days=settings.magic_link_ttl_days)


def generate_short_code() -> str:
    return "".join(
        secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_LENGTH)
    )


def compute_webhook_signature(body: bytes, secret: Optional[str] = None) -> str:
    key = (secret or get_settings().payment_webhook_secret).encode("utf-8")
    return hmac.new(key, body, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    body: bytes, signature: Optional[str], secret: Optional[str] = None
) -> bool:
    if not signature:
        return False
    expected = compute_webhook_signature(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())
