"""Identity provider implementations."""

from fleettraq.identity.base import IdentityProvider
from fleettraq.identity.firebase import FirebaseIdentityProvider
from fleettraq.identity.memory import InMemoryIdentityProvider

__all__ = [
    "FirebaseIdentityProvider",
    "IdentityProvider",
    "InMemoryIdentityProvider",
]
