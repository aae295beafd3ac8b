"""
Shared schema base classes.

Every model serializes to camelCase on the wire and accepts either
camelCase or snake_case on input.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from partsflow.core.errors import FieldError


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
    )


class ErrorResponse(BaseModel):
    """Error envelope returned by every exception handler."""

    error: str = Field(..., description="Machine-readable error code")
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    request_id: Optional[str] = None


def field_errors_from_pydantic(errors: list[dict[str, Any]]) -> list[FieldError]:
    """Flatten pydantic error locations into dotted field names."""
    result = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        result.append(FieldError(".".join(location) or "body", error.get("msg", "Invalid value")))
    return result
