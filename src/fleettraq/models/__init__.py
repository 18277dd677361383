"""Typed records for every collection the coordinators touch."""

from fleettraq.models._base import FleetRecord, IsoTimestamp, format_iso_timestamp, parse_iso_timestamp
from fleettraq.models.deletion import AccountSession, DeletionApproval, DeletionRequest
from fleettraq.models.location import Location, Position
from fleettraq.models.tracking import TrackingMethod, TrackingRecord
from fleettraq.models.user import AuthToken, User

__all__ = [
    "AccountSession",
    "AuthToken",
    "DeletionApproval",
    "DeletionRequest",
    "FleetRecord",
    "IsoTimestamp",
    "Location",
    "Position",
    "TrackingMethod",
    "TrackingRecord",
    "User",
    "format_iso_timestamp",
    "parse_iso_timestamp",
]
