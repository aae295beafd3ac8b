"""
Typed error taxonomy shared by every service.

Each error carries the HTTP status and machine-readable code it maps to at
the API boundary, plus free-form context for logging.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional, Sequence


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class PartsFlowError(Exception):
    """Base exception for domain errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def details(self) -> dict[str, Any]:
        """Client-safe error details."""
        return {}


class ValidationError(PartsFlowError):
    """Malformed input, reported per field."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        errors: Optional[Sequence[FieldError]] = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.errors = list(errors or [])

    @classmethod
    def for_field(cls, field: str, message: str, **context: Any) -> "ValidationError":
        return cls(message, errors=[FieldError(field, message)], **context)

    def details(self) -> dict[str, Any]:
        return {"errors": [e.to_dict() for e in self.errors]}


class LimitExceeded(PartsFlowError):
    """A hard cap (such as offers per item) has been reached."""

    status_code = 409
    code = "LIMIT_EXCEEDED"

    def __init__(self, message: str, limit: int, **context: Any):
        super().__init__(message, limit=limit, **context)
        self.limit = limit

    def details(self) -> dict[str, Any]:
        return {"limit": self.limit}


class Unauthorized(PartsFlowError):
    status_code = 401
    code = "UNAUTHORIZED"


class Forbidden(PartsFlowError):
    status_code = 403
    code = "FORBIDDEN"


class NotFound(PartsFlowError):
    """Entity is absent or not visible to the caller."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str, resource: str, **context: Any):
        super().__init__(message, resource=resource, **context)
        self.resource = resource

    def details(self) -> dict[str, Any]:
        return {"resource": self.resource}


class InvalidTransition(PartsFlowError):
    """Illegal order status change, or an action the current status forbids."""

    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(
        self,
        message: str,
        current_status: Any,
        target_status: Any = None,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.current_status = current_status
        self.target_status = target_status

    def details(self) -> dict[str, Any]:
        details = {"current_status": _enum_value(self.current_status)}
        if self.target_status is not None:
            details["target_status"] = _enum_value(self.target_status)
        allowed = self.context.get("allowed_transitions")
        if allowed is not None:
            details["allowed_transitions"] = allowed
        return details


class VersionConflict(PartsFlowError):
    """Optimistic concurrency check failed."""

    status_code = 409
    code = "VERSION_CONFLICT"

    def __init__(
        self,
        message: str,
        expected_version: int,
        current_version: int,
        **context: Any,
    ):
        super().__init__(message, **context)
        self.expected_version = expected_version
        self.current_version = current_version

    def details(self) -> dict[str, Any]:
        return {
            "expected_version": self.expected_version,
            "current_version": self.current_version,
        }


class UpstreamFailure(PartsFlowError):
    """An external collaborator (email, payment gateway) failed."""

    status_code = 502
    code = "UPSTREAM_FAILURE"

    def __init__(self, message: str, upstream: str, **context: Any):
        super().__init__(message, upstream=upstream, **context)
        self.upstream = upstream


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)
