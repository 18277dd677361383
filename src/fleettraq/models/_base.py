"""Base model for documents stored in the record store.

Every collection model inherits from :class:`FleetRecord` which provides:

* ``alias_generator=to_camel`` so camelCase document keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None`` values so the
  field default is used instead.
* ``to_document()`` which renders the fields (without ``id``) back into
  the camelCase layout written to the store.

Timestamps are kept as timezone-aware datetimes in Python and written as
ISO-8601 strings with millisecond precision and a ``Z`` suffix, the same
shape browsers produce with ``Date.toISOString()``. Ordering in the store
is lexical on that string.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_iso_timestamp(value: Any) -> datetime | None:
    """Coerce an ISO-8601 string (or epoch milliseconds) to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"unsupported timestamp value: {value!r}")


def format_iso_timestamp(value: datetime) -> str:
    """Render *value* like ``Date.toISOString()``: ``2024-05-01T08:30:00.123Z``."""
    as_utc = value.astimezone(UTC)
    return as_utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{as_utc.microsecond // 1000:03d}Z"


IsoTimestamp = Annotated[
    datetime,
    BeforeValidator(parse_iso_timestamp),
    PlainSerializer(format_iso_timestamp, return_type=str, when_used="json"),
]
"""Datetime that reads ISO strings/epoch millis and dumps as ISO-8601 ``Z``."""


class FleetRecord(BaseModel):
    """Base for documents read from and written to the record store."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    id: str = ""
    """Record store identifier; empty until the document has been created."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return {key: value for key, value in values.items() if value is not None}

    def to_document(self) -> dict[str, Any]:
        """Fields as written to the store (camelCase, JSON-compatible, no ``id``)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})
