"""Multi-device vehicle tracking coordinator.

Arbitrates which device may write a vehicle's live position and keeps a
live view of every tracked vehicle plus the history of the selected one.

Per (device, vehicle) the coordinator moves through::

    idle -> requesting -> controlling -> stopped | superseded | removed

and returns to ``idle`` whenever the selection changes. The "no other
active controller" guard is checked against the last tracked-vehicles
snapshot, not a transactional claim, so two devices starting within the
same snapshot window can both write; the older write then shows up as
``superseded`` on its device once the next snapshot arrives.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from fleettraq._constants import GPS_LOCATION_NAME, MANUAL_LOCATION_NAME, TRACKING_COLLECTION
from fleettraq.config import FleetConfig
from fleettraq.exceptions import (
    FleetError,
    FleetGeolocationError,
    FleetPreconditionError,
    FleetValidationError,
)
from fleettraq.geolocation import PositionError, PositionFeed
from fleettraq.identity.base import IdentityProvider
from fleettraq.models._base import utcnow
from fleettraq.models.location import Location
from fleettraq.models.tracking import TrackingMethod, TrackingRecord
from fleettraq.policy import blocking_controller, latest_per_vehicle, newest
from fleettraq.records.base import Document, FieldFilter, OrderBy, RecordStore, Subscription, parse_documents

_logger = logging.getLogger(__name__)

_BY_TIMESTAMP_DESC = OrderBy("timestamp", descending=True)


class TrackingPhase(StrEnum):
    IDLE = "idle"
    REQUESTING = "requesting"
    CONTROLLING = "controlling"
    STOPPED = "stopped"
    SUPERSEDED = "superseded"
    REMOVED = "removed"


class TrackingView(BaseModel):
    """Immutable snapshot of the coordinator state handed to listeners."""

    model_config = ConfigDict(frozen=True)

    selected_vehicle_id: str | None = None
    current_location: Location | None = None
    map_center: Location
    location_name: str = ""
    tracking_history: tuple[TrackingRecord, ...] = ()
    tracked_vehicles: tuple[TrackingRecord, ...] = ()
    controlling_device_id: str | None = None
    active_record_id: str | None = None
    is_tracking: bool = False
    use_manual_coordinates: bool = False
    phase: TrackingPhase = TrackingPhase.IDLE
    busy: bool = False
    error: str | None = None


def parse_coordinates(lat: Any, lng: Any) -> tuple[float, float]:
    """Validate manually entered coordinates.

    Raises :class:`FleetValidationError` with the user-facing message when
    either value is missing, unparseable or out of range.
    """
    if lat is None or lng is None or str(lat).strip() == "" or str(lng).strip() == "":
        raise FleetValidationError("Please enter both latitude and longitude values.")
    try:
        lat_value = float(str(lat).strip())
        lng_value = float(str(lng).strip())
    except ValueError as exc:
        raise FleetValidationError("Please enter valid coordinates.") from exc
    if math.isnan(lat_value) or math.isnan(lng_value):
        raise FleetValidationError("Please enter valid coordinates.")
    if not -90.0 <= lat_value <= 90.0 or not -180.0 <= lng_value <= 180.0:
        raise FleetValidationError("Please enter valid coordinates.")
    return lat_value, lng_value


class TrackingCoordinator:
    """Owns the tracking subscriptions and the continuous sampling task.

    Usage::

        async with TrackingCoordinator(store, device_id, feed=feed) as tracking:
            tracking.select_vehicle("veh-1")
            await tracking.start_tracking()

    Actions never raise: failures are logged and surfaced on
    ``view.error``.
    """

    def __init__(
        self,
        store: RecordStore,
        device_id: str,
        *,
        identity: IdentityProvider | None = None,
        feed: PositionFeed | None = None,
        config: FleetConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._device_id = device_id
        self._identity = identity
        self._feed = feed
        self._config = config or FleetConfig()
        self._clock = clock
        self._listeners: list[Callable[[TrackingView], None]] = []

        self._tracked_sub: Subscription | None = None
        self._history_sub: Subscription | None = None
        self._watch_task: asyncio.Task[None] | None = None

        self._tracked: tuple[TrackingRecord, ...] = ()
        self._selected: str | None = None
        self._tracking_vehicle: str | None = None
        self._history: tuple[TrackingRecord, ...] = ()
        self._current_location: Location | None = None
        self._last_known: Location | None = None
        self._location_name = ""
        self._controller: str | None = None
        self._active_record_id: str | None = None
        self._is_tracking = False
        self._manual = False
        self._phase = TrackingPhase.IDLE
        self._busy = False
        self._error: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TrackingCoordinator:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def start(self) -> None:
        """Subscribe to the tracked-vehicles feed (idempotent)."""
        if self._tracked_sub is not None:
            return
        self._tracked_sub = self._store.subscribe(
            TRACKING_COLLECTION,
            order_by=_BY_TIMESTAMP_DESC,
            on_snapshot=self._on_tracked_snapshot,
            on_error=lambda exc: self._fail(f"Failed to fetch tracked vehicles: {exc}"),
        )

    async def close(self) -> None:
        """Tear down every subscription and the sampling task."""
        if self._tracked_sub is not None:
            self._tracked_sub.close()
            self._tracked_sub = None
        self._close_history()
        await self._stop_watch()

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def view(self) -> TrackingView:
        center = self._current_location or self._last_known
        if center is None:
            lat, lng = self._config.default_center
            center = Location(lat=lat, lng=lng)
        return TrackingView(
            selected_vehicle_id=self._selected,
            current_location=self._current_location,
            map_center=center,
            location_name=self._location_name,
            tracking_history=self._history,
            tracked_vehicles=self._tracked,
            controlling_device_id=self._controller,
            active_record_id=self._active_record_id,
            is_tracking=self._is_tracking,
            use_manual_coordinates=self._manual,
            phase=self._phase,
            busy=self._busy,
            error=self._error,
        )

    @property
    def is_sampling(self) -> bool:
        """Whether the continuous position watch is running."""
        return self._watch_task is not None and not self._watch_task.done()

    def add_listener(self, callback: Callable[[TrackingView], None]) -> Callable[[], None]:
        """Call *callback* with a fresh view on every change. Returns a remover."""
        self._listeners.append(callback)

        def _remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(callback)

        return _remove

    def _changed(self) -> None:
        if not self._listeners:
            return
        view = self.view
        for callback in list(self._listeners):
            try:
                callback(view)
            except Exception:
                _logger.debug("Tracking listener failed", exc_info=True)

    def _fail(self, message: str) -> None:
        _logger.info("Tracking action failed: %s", message)
        self._error = message
        self._changed()

    def clear_error(self) -> None:
        self._error = None
        self._changed()

    # ------------------------------------------------------------------
    # Selection and mode
    # ------------------------------------------------------------------

    def select_vehicle(self, vehicle_id: str | None) -> None:
        """Show *vehicle_id*'s live history, or clear the selection with ``None``."""
        vehicle_id = vehicle_id or None
        if vehicle_id == self._selected and (vehicle_id is None or self._history_sub is not None):
            return
        self._close_history()
        self._cancel_watch()
        self._selected = vehicle_id
        self._tracking_vehicle = None
        self._reset_vehicle_state()
        self._phase = TrackingPhase.IDLE
        if vehicle_id is not None:
            self._history_sub = self._store.subscribe(
                TRACKING_COLLECTION,
                filters=(FieldFilter("vehicleId", vehicle_id),),
                order_by=_BY_TIMESTAMP_DESC,
                on_snapshot=self._on_history_snapshot,
                on_error=lambda exc: self._fail(f"Failed to fetch tracking updates: {exc}"),
            )
        _logger.debug("Selected vehicle %s", vehicle_id)
        self._changed()

    def set_manual_mode(self, enabled: bool) -> None:
        """Switch between manual coordinates and GPS sampling."""
        self._manual = bool(enabled)
        self._reconcile_watch()
        self._changed()

    def _reset_vehicle_state(self) -> None:
        self._current_location = None
        self._history = ()
        self._controller = None
        self._active_record_id = None
        self._is_tracking = False
        self._location_name = ""

    def _close_history(self) -> None:
        if self._history_sub is not None:
            self._history_sub.close()
            self._history_sub = None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _on_tracked_snapshot(self, documents: list[Document]) -> None:
        records = parse_documents(TrackingRecord, documents)
        self._tracked = tuple(latest_per_vehicle(records))
        _logger.debug("Tracked vehicles: %d", len(self._tracked))
        self._changed()

    def _on_history_snapshot(self, documents: list[Document]) -> None:
        records = parse_documents(TrackingRecord, documents)
        self._history = tuple(records)
        latest = newest(records)

        if latest is None:
            self._current_location = None
            self._controller = None
            self._active_record_id = None
            if self._phase == TrackingPhase.CONTROLLING:
                self._set_phase(TrackingPhase.REMOVED)
                self._is_tracking = False
        else:
            self._controller = latest.device_id if latest.is_tracking else None
            self._active_record_id = latest.id
            self._current_location = latest.location
            self._last_known = latest.location
            self._location_name = latest.location_name or ""
            if self._phase != TrackingPhase.REQUESTING:
                self._is_tracking = latest.is_tracking
            self._advance_phase(latest)
            if self._phase == TrackingPhase.CONTROLLING and latest.device_id == self._device_id:
                # Resume our own live session after a reselect or restart.
                self._tracking_vehicle = self._selected

        self._reconcile_watch()
        self._changed()

    def _advance_phase(self, latest: TrackingRecord) -> None:
        mine = latest.device_id == self._device_id
        if mine and latest.is_tracking:
            if self._phase != TrackingPhase.REQUESTING:
                self._set_phase(TrackingPhase.CONTROLLING)
        elif self._phase == TrackingPhase.CONTROLLING:
            self._set_phase(TrackingPhase.STOPPED if mine else TrackingPhase.SUPERSEDED)

    def _set_phase(self, phase: TrackingPhase) -> None:
        if phase != self._phase:
            _logger.debug("Tracking phase %s -> %s (vehicle=%s)", self._phase, phase, self._selected)
            self._phase = phase

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _account_id(self) -> str:
        user = self._identity.current_user if self._identity is not None else None
        return user.id if user is not None else self._config.fallback_account_id

    async def start_tracking(
        self,
        vehicle_id: str | None = None,
        *,
        lat: Any = None,
        lng: Any = None,
        location_name: str | None = None,
    ) -> str | None:
        """Claim *vehicle_id* (default: the selected vehicle) and write a first sample.

        In manual mode *lat*/*lng* are validated and written once. Otherwise
        one fix is taken from the position feed, written, and continuous
        sampling starts. Returns the new record id, or ``None`` on failure.
        """
        vehicle_id = vehicle_id or self._selected
        try:
            if not vehicle_id:
                raise FleetValidationError("Please select a vehicle to track.")
            self._error = None
            if blocking_controller(self._tracked, vehicle_id, self._device_id) is not None:
                raise FleetPreconditionError("This vehicle is already being tracked by another device.")
            if self._manual:
                lat_value, lng_value = parse_coordinates(lat, lng)
            elif self._feed is None:
                raise FleetPreconditionError("Geolocation is not available on this device.")
        except FleetError as exc:
            self._fail(str(exc))
            return None

        if vehicle_id != self._selected:
            self.select_vehicle(vehicle_id)

        if self._manual:
            return await self._write_sample(
                vehicle_id,
                lat_value,
                lng_value,
                location_name or MANUAL_LOCATION_NAME,
                TrackingMethod.MANUAL,
            )
        return await self._start_gps(vehicle_id)

    async def _start_gps(self, vehicle_id: str) -> str | None:
        assert self._feed is not None  # noqa: S101
        self._set_phase(TrackingPhase.REQUESTING)
        self._is_tracking = True
        self._busy = True
        self._changed()
        try:
            position = await self._feed.current_position(self._config.geolocation)
        except FleetGeolocationError as exc:
            self._busy = False
            self._is_tracking = False
            self._set_phase(TrackingPhase.IDLE)
            self._fail(f"Unable to get your location: {exc}")
            return None
        self._busy = False
        return await self._write_sample(
            vehicle_id,
            position.latitude,
            position.longitude,
            GPS_LOCATION_NAME,
            TrackingMethod.GPS,
        )

    async def _write_sample(
        self,
        vehicle_id: str,
        lat: float,
        lng: float,
        name: str,
        method: TrackingMethod,
    ) -> str | None:
        """Create one tracking record; on failure surface the error and return ``None``."""
        try:
            return await self._save_location(vehicle_id, lat, lng, name, method)
        except FleetError as exc:
            if self._phase == TrackingPhase.REQUESTING:
                self._is_tracking = False
                self._set_phase(TrackingPhase.IDLE)
            self._fail(f"Failed to save location: {exc}")
            return None

    async def _save_location(
        self,
        vehicle_id: str,
        lat: float,
        lng: float,
        name: str,
        method: TrackingMethod,
    ) -> str:
        record = TrackingRecord(
            vehicle_id=vehicle_id,
            lat=lat,
            lng=lng,
            location_name=name,
            timestamp=self._clock(),
            method=method,
            device_id=self._device_id,
            account_id=self._account_id(),
            is_tracking=True,
        )
        record_id = await self._store.create(TRACKING_COLLECTION, record.to_document())
        _logger.debug("Saved %s sample %s for vehicle=%s", method, record_id, vehicle_id)

        if vehicle_id == self._selected:
            self._tracking_vehicle = vehicle_id
            self._controller = self._device_id
            self._active_record_id = record_id
            self._current_location = record.location
            self._last_known = record.location
            self._location_name = name
            self._is_tracking = True
            self._set_phase(TrackingPhase.CONTROLLING)
            self._reconcile_watch()
            self._changed()
        return record_id

    async def stop_tracking(self, vehicle_id: str | None = None, record_id: str | None = None) -> bool:
        """Mark *record_id* as no longer tracking."""
        if not record_id:
            self._fail("No active tracking session found.")
            return False
        self._busy = True
        self._cancel_watch()
        self._changed()
        try:
            await self._store.update(TRACKING_COLLECTION, record_id, {"isTracking": False})
        except FleetError as exc:
            self._busy = False
            self._reconcile_watch()
            self._fail(f"Failed to stop tracking: {exc}")
            return False
        self._busy = False
        self._error = None
        if vehicle_id is None or vehicle_id == self._selected:
            self._is_tracking = False
            self._controller = None
            self._tracking_vehicle = None
            if self._phase in (TrackingPhase.CONTROLLING, TrackingPhase.REQUESTING):
                self._set_phase(TrackingPhase.STOPPED)
            self._cancel_watch()
        _logger.debug("Stopped tracking record %s", record_id)
        self._changed()
        return True

    async def remove_from_tracking(self, record_id: str | None) -> bool:
        """Delete a tracking record outright."""
        if not record_id:
            self._fail("No tracking entry selected for removal.")
            return False
        entry = next((r for r in self._tracked if r.id == record_id), None)
        if entry is None:
            self._fail("Tracking entry not found.")
            return False
        try:
            await self._store.delete(TRACKING_COLLECTION, record_id)
        except FleetError as exc:
            self._fail(f"Failed to remove vehicle from tracking: {exc}")
            return False

        self._error = None
        if self._selected == entry.vehicle_id:
            self._close_history()
            self._cancel_watch()
            self._reset_vehicle_state()
            self._selected = None
            self._tracking_vehicle = None
            self._set_phase(TrackingPhase.REMOVED)
        self._tracked = tuple(r for r in self._tracked if r.id != record_id)
        _logger.debug("Removed tracking record %s (vehicle=%s)", record_id, entry.vehicle_id)
        self._changed()
        return True

    # ------------------------------------------------------------------
    # Continuous sampling
    # ------------------------------------------------------------------

    def _should_sample(self) -> bool:
        return (
            self._feed is not None
            and self._is_tracking
            and not self._manual
            and self._tracking_vehicle is not None
            and self._tracking_vehicle == self._selected
            and (self._controller is None or self._controller == self._device_id)
        )

    def _reconcile_watch(self) -> None:
        if self._should_sample():
            if not self.is_sampling and self._tracking_vehicle is not None:
                self._watch_task = asyncio.get_running_loop().create_task(
                    self._run_watch(self._tracking_vehicle),
                    name=f"fleettraq-watch-{self._tracking_vehicle}",
                )
        else:
            self._cancel_watch()

    def _cancel_watch(self) -> None:
        task = self._watch_task
        self._watch_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _stop_watch(self) -> None:
        task = self._watch_task
        self._cancel_watch()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _run_watch(self, vehicle_id: str) -> None:
        assert self._feed is not None  # noqa: S101
        _logger.debug("Sampling started for vehicle=%s", vehicle_id)
        try:
            async with contextlib.aclosing(self._feed.watch(self._config.geolocation)) as events:
                async for event in events:
                    if isinstance(event, PositionError):
                        self._fail(f"Tracking error: {event.message}")
                        continue
                    if not self._should_sample() or self._tracking_vehicle != vehicle_id:
                        break
                    await self._write_sample(
                        vehicle_id,
                        event.latitude,
                        event.longitude,
                        GPS_LOCATION_NAME,
                        TrackingMethod.GPS,
                    )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _logger.exception("Position watch for vehicle=%s crashed", vehicle_id)
            self._fail(f"Tracking error: {exc}")
        finally:
            _logger.debug("Sampling stopped for vehicle=%s", vehicle_id)
