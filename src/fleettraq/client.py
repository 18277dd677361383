"""High-level async client wiring the coordinators to their collaborators."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from fleettraq._transport import JsonTransport
from fleettraq.config import FleetConfig
from fleettraq.deletion import DeletionCoordinator
from fleettraq.device import DeviceIdentity
from fleettraq.exceptions import FleetConfigError
from fleettraq.geolocation import PositionFeed
from fleettraq.identity.base import IdentityProvider
from fleettraq.identity.firebase import FirebaseIdentityProvider
from fleettraq.models.user import User
from fleettraq.records.base import RecordStore
from fleettraq.records.firestore import FirestoreRecordStore
from fleettraq.tracking import TrackingCoordinator

_logger = logging.getLogger(__name__)


class FleetClient:
    """Owns the HTTP session, identity provider, record store and device id.

    Collaborators that are not injected are built on ``__aenter__``: a
    Firebase identity provider and a Firestore record store sharing one
    ``aiohttp.ClientSession``, and a device identity persisted under
    ``config.state_dir``.

    Usage::

        async with FleetClient(FleetConfig.from_env()) as client:
            await client.sign_in("ops@example.com", "secret")
            async with client.tracking(feed) as tracking:
                tracking.select_vehicle("veh-1")
                await tracking.start_tracking()
    """

    def __init__(
        self,
        config: FleetConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        store: RecordStore | None = None,
        identity: IdentityProvider | None = None,
        device: DeviceIdentity | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._store = store
        self._identity = identity
        self._device = device
        self._owned_store: FirestoreRecordStore | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FleetClient:
        if self._device is None:
            self._device = DeviceIdentity.load_or_create(self._config.state_dir)
        if self._store is None or self._identity is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            transport = JsonTransport(self._http_session, timeout=self._config.request_timeout)
            if self._identity is None:
                self._identity = FirebaseIdentityProvider(self._config, transport)
            if self._store is None:
                self._owned_store = FirestoreRecordStore(
                    self._config,
                    transport,
                    token_provider=self._identity.id_token,
                )
                self._store = self._owned_store
        _logger.debug("FleetClient ready (device=%s)", self._device.device_id)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._owned_store is not None:
            await self._owned_store.aclose()
            self._owned_store = None
            self._store = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def config(self) -> FleetConfig:
        return self._config

    @property
    def store(self) -> RecordStore:
        if self._store is None:
            raise FleetConfigError("FleetClient is not open; use 'async with FleetClient(...)'")
        return self._store

    @property
    def identity(self) -> IdentityProvider:
        if self._identity is None:
            raise FleetConfigError("FleetClient is not open; use 'async with FleetClient(...)'")
        return self._identity

    @property
    def device_id(self) -> str:
        if self._device is None:
            raise FleetConfigError("FleetClient is not open; use 'async with FleetClient(...)'")
        return self._device.device_id

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def current_user(self) -> User | None:
        return self.identity.current_user

    async def sign_in(self, email: str, password: str) -> User:
        user = await self.identity.sign_in(email, password)
        _logger.info("Signed in as %s", user.id)
        return user

    async def sign_up(self, email: str, password: str) -> User:
        user = await self.identity.sign_up(email, password)
        _logger.info("Created account %s", user.id)
        return user

    async def sign_out(self) -> None:
        await self.identity.sign_out()

    # ------------------------------------------------------------------
    # Coordinators
    # ------------------------------------------------------------------

    def tracking(self, feed: PositionFeed | None = None) -> TrackingCoordinator:
        """New tracking coordinator for this device. Caller owns its lifecycle."""
        return TrackingCoordinator(
            self.store,
            self.device_id,
            identity=self.identity,
            feed=feed,
            config=self._config,
        )

    def deletion(self) -> DeletionCoordinator:
        """New deletion quorum coordinator for this device and the signed-in account."""
        return DeletionCoordinator(self.store, self.identity, self.device_id, config=self._config)
