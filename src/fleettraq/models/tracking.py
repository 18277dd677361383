"""Tracking record model."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field, field_validator

from fleettraq.models._base import FleetRecord, IsoTimestamp, utcnow
from fleettraq.models.location import Location


class TrackingMethod(StrEnum):
    GPS = "gps"
    MANUAL = "manual"


class TrackingRecord(FleetRecord):
    """One position sample of a tracking session (``tracking`` collection).

    A record is written per captured sample. It is only ever updated to
    flip ``is_tracking`` to ``False`` (stop) or deleted outright.

    Parameters
    ----------
    vehicle_id : str
        Tracked vehicle.
    lat, lng : float
        Coordinates, range-checked at the store boundary.
    location_name : str or None
        Human label ("Current Location", "Manual Location", or user text).
    timestamp : datetime
        Creation time of the sample. Client supplied, so only a best-effort
        ordering across devices.
    method : TrackingMethod
        ``gps`` or ``manual``.
    device_id : str
        Device that produced the sample (the controlling device claim).
    account_id : str
        Owning account.
    is_tracking : bool
        ``True`` while the session is live.
    """

    vehicle_id: str = Field(min_length=1)
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)
    location_name: str | None = None
    timestamp: IsoTimestamp = Field(default_factory=utcnow)
    method: TrackingMethod = TrackingMethod.GPS
    device_id: str = ""
    account_id: str = ""
    is_tracking: bool = True

    @field_validator("lat", "lng", mode="before")
    @classmethod
    def _coerce_numeric_strings(cls, value: object) -> object:
        if isinstance(value, str):
            return float(value.strip())
        return value

    @property
    def location(self) -> Location:
        return Location(lat=self.lat, lng=self.lng, name=self.location_name)
