"""Position and location value types."""

from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from fleettraq.models._base import utcnow


class Position(BaseModel):
    """A single fix delivered by a position feed.

    Parameters
    ----------
    latitude : float
        Latitude in degrees, ``[-90, 90]``.
    longitude : float
        Longitude in degrees, ``[-180, 180]``.
    accuracy : float or None
        Horizontal accuracy radius in meters, when the source reports it.
    captured_at : datetime
        When the fix was taken.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    latitude: float = Field(ge=-90.0, le=90.0, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(ge=-180.0, le=180.0, validation_alias=AliasChoices("longitude", "lng", "lon"))
    accuracy: float | None = None
    captured_at: datetime = Field(default_factory=utcnow)

    @field_validator("accuracy")
    @classmethod
    def _non_negative_accuracy(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            return None
        return value


class Location(BaseModel):
    """What the map shows: coordinates and an optional label."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    name: str | None = None
