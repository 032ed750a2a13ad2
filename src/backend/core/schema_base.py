"""
Base schema models for API payloads.

Request bodies accept snake_case or camelCase, responses are emitted in
camelCase, datetimes carry a 'Z' suffix, and every response is wrapped in
the `{"success": ..., "data": ...}` envelope.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, field_serializer


def to_camel(string: str) -> str:
    """
    Convert snake_case to camelCase.

    Example:
        >>> to_camel("scheduled_date")
        'scheduledDate'
    """
    parts = string.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    Serialize a UTC datetime to ISO 8601 with a 'Z' suffix.

    Aware datetimes are converted to UTC first; naive ones are assumed UTC,
    which is how they are stored.
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)

    return dt.isoformat() + "Z"


class HTTPSchemaModel(BaseModel):
    """
    Base model for all HTTP API schemas.

    - camelCase aliases with snake_case input still accepted
    - built straight from ORM rows (from_attributes=True)
    - datetimes serialized with the UTC indicator
    """

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_serializer("*", mode="wrap")
    @classmethod
    def serialize_any_datetime(cls, value: Any, handler: Any) -> Any:
        if isinstance(value, datetime):
            return serialize_datetime(value)
        return handler(value)


DataT = TypeVar("DataT")


class SuccessResponse(HTTPSchemaModel, Generic[DataT]):
    """Envelope for successful responses."""

    success: bool = True
    data: DataT


class ErrorBody(HTTPSchemaModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(HTTPSchemaModel):
    """Envelope for failed responses, documented on every route."""

    success: bool = False
    error: ErrorBody


def envelope(data: Any) -> Dict[str, Any]:
    """Wrap a payload for endpoints that build their response by hand."""
    return {"success": True, "data": data}
