"""fleettraq - Multi-device vehicle tracking and account deletion coordination."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleettraq")
except PackageNotFoundError:
    __version__ = "0+local"
from fleettraq.client import FleetClient
from fleettraq.config import FleetConfig, GeolocationOptions
from fleettraq.deletion import DeletionCoordinator, DeletionPhase, DeletionView
from fleettraq.device import DeviceIdentity
from fleettraq.exceptions import (
    FleetAccountGoneError,
    FleetAuthenticationError,
    FleetConfigError,
    FleetError,
    FleetGeolocationError,
    FleetIdentityError,
    FleetPreconditionError,
    FleetReauthenticationRequiredError,
    FleetStoreError,
    FleetTransportError,
    FleetValidationError,
)
from fleettraq.geolocation import PositionError, PositionFeed, QueuePositionFeed
from fleettraq.identity import FirebaseIdentityProvider, IdentityProvider, InMemoryIdentityProvider
from fleettraq.models import (
    AccountSession,
    DeletionApproval,
    DeletionRequest,
    Location,
    Position,
    TrackingMethod,
    TrackingRecord,
    User,
)
from fleettraq.records import FirestoreRecordStore, InMemoryRecordStore, RecordStore
from fleettraq.tracking import TrackingCoordinator, TrackingPhase, TrackingView

__all__ = [
    "__version__",
    "AccountSession",
    "DeletionApproval",
    "DeletionCoordinator",
    "DeletionPhase",
    "DeletionRequest",
    "DeletionView",
    "DeviceIdentity",
    "FirebaseIdentityProvider",
    "FirestoreRecordStore",
    "FleetAccountGoneError",
    "FleetAuthenticationError",
    "FleetClient",
    "FleetConfig",
    "FleetConfigError",
    "FleetError",
    "FleetGeolocationError",
    "FleetIdentityError",
    "FleetPreconditionError",
    "FleetReauthenticationRequiredError",
    "FleetStoreError",
    "FleetTransportError",
    "FleetValidationError",
    "GeolocationOptions",
    "IdentityProvider",
    "InMemoryIdentityProvider",
    "InMemoryRecordStore",
    "Location",
    "Position",
    "PositionError",
    "PositionFeed",
    "QueuePositionFeed",
    "RecordStore",
    "TrackingCoordinator",
    "TrackingMethod",
    "TrackingPhase",
    "TrackingRecord",
    "TrackingView",
    "User",
]
