"""Firestore REST typed-value encoding.

Firestore's REST API wraps every field in a one-key object naming its
type (``{"stringValue": "abc"}``, ``{"integerValue": "5"}``, ...). These
helpers convert between that layout and plain Python values.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from fleettraq.models._base import format_iso_timestamp


def encode_value(value: Any) -> dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    # bool before int: bool is an int subclass.
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": format_iso_timestamp(value)}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(item) for item in value]}}
    raise TypeError(f"Cannot encode {type(value).__name__} as a Firestore value")


def decode_value(value: Mapping[str, Any]) -> Any:
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        # Left as ISO text; the model layer parses timestamps.
        return value["timestampValue"]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(item) for item in value["arrayValue"].get("values", [])]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "geoPointValue" in value:
        point = value["geoPointValue"]
        return {"lat": point.get("latitude"), "lng": point.get("longitude")}
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def encode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key): encode_value(val) for key, val in fields.items()}


def decode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: decode_value(val) for key, val in fields.items()}


def document_id(name: str) -> str:
    """Last path segment of a document resource name."""
    return name.rstrip("/").rsplit("/", 1)[-1]
