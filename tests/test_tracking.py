from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from fleettraq.exceptions import FleetStoreError, FleetValidationError
from fleettraq.geolocation import QueuePositionFeed
from fleettraq.identity import InMemoryIdentityProvider
from fleettraq.models import Location, Position, TrackingMethod, TrackingRecord
from fleettraq.records import InMemoryRecordStore, parse_documents
from fleettraq.tracking import TrackingCoordinator, TrackingPhase, TrackingView, parse_coordinates


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _ticking_clock() -> Callable[[], datetime]:
    now = [datetime(2026, 1, 1, tzinfo=UTC)]

    def _tick() -> datetime:
        now[0] += timedelta(seconds=1)
        return now[0]

    return _tick


def _records(store: InMemoryRecordStore) -> list[TrackingRecord]:
    return parse_documents(TrackingRecord, store.documents("tracking"))


async def _start_gps(coordinator: TrackingCoordinator, feed: QueuePositionFeed, vehicle_id: str) -> str | None:
    pending = asyncio.ensure_future(coordinator.start_tracking(vehicle_id))
    await _settle()
    feed.push(Position(latitude=-1.29, longitude=36.82))
    record_id = await pending
    await _settle()
    return record_id


class _FailingCreateStore(InMemoryRecordStore):
    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        raise FleetStoreError("backend unavailable", operation="create", collection=collection)


@pytest.mark.asyncio
async def test_initial_view_centers_on_default_location() -> None:
    async with TrackingCoordinator(InMemoryRecordStore(), "dev-a") as tracking:
        view = tracking.view

    assert view.map_center == Location(lat=-1.2864, lng=36.8172)
    assert view.phase is TrackingPhase.IDLE
    assert view.tracked_vehicles == ()


@pytest.mark.asyncio
async def test_manual_start_writes_record_with_device_and_account() -> None:
    store = InMemoryRecordStore()
    identity = InMemoryIdentityProvider()
    user = await identity.sign_up("ops@example.com", "secret")
    tracking = TrackingCoordinator(store, "dev-a", identity=identity, clock=_ticking_clock())
    await tracking.start()
    tracking.set_manual_mode(True)
    tracking.select_vehicle("veh-1")

    record_id = await tracking.start_tracking(lat="-1.3", lng=" 36.9 ")
    await _settle()

    (record,) = _records(store)
    assert record.id == record_id
    assert record.device_id == "dev-a"
    assert record.account_id == user.id
    assert record.method is TrackingMethod.MANUAL
    assert record.location_name == "Manual Location"
    assert record.is_tracking is True

    view = tracking.view
    assert view.phase is TrackingPhase.CONTROLLING
    assert view.controlling_device_id == "dev-a"
    assert view.active_record_id == record_id
    assert view.map_center == Location(lat=-1.3, lng=36.9, name="Manual Location")
    assert [r.id for r in view.tracked_vehicles] == [record_id]
    assert [r.id for r in view.tracking_history] == [record_id]
    await tracking.close()


@pytest.mark.asyncio
async def test_signed_out_sample_uses_fallback_account() -> None:
    store = InMemoryRecordStore()
    tracking = TrackingCoordinator(store, "dev-a")
    tracking.set_manual_mode(True)

    await tracking.start_tracking("veh-1", lat=1, lng=2, location_name="Depot")

    (record,) = _records(store)
    assert record.account_id == "YOUR_ACCOUNT_ID"
    assert record.location_name == "Depot"
    await tracking.close()


@pytest.mark.asyncio
async def test_second_device_is_rejected_while_vehicle_is_controlled() -> None:
    store = InMemoryRecordStore()
    clock = _ticking_clock()
    device_a = TrackingCoordinator(store, "dev-a", clock=clock)
    device_b = TrackingCoordinator(store, "dev-b", clock=clock)
    await device_a.start()
    await device_b.start()
    device_a.set_manual_mode(True)
    device_b.set_manual_mode(True)

    assert await device_a.start_tracking("veh-1", lat=1, lng=1) is not None
    await _settle()

    assert await device_b.start_tracking("veh-1", lat=2, lng=2) is None
    assert device_b.view.error == "This vehicle is already being tracked by another device."
    assert len(_records(store)) == 1

    await device_a.close()
    await device_b.close()


@pytest.mark.asyncio
async def test_gps_tracking_samples_continuously_until_manual_mode() -> None:
    store = InMemoryRecordStore()
    feed = QueuePositionFeed()
    tracking = TrackingCoordinator(store, "dev-a", feed=feed, clock=_ticking_clock())
    await tracking.start()

    record_id = await _start_gps(tracking, feed, "veh-1")

    assert record_id is not None
    assert tracking.view.phase is TrackingPhase.CONTROLLING
    assert tracking.is_sampling
    assert feed.watcher_count == 1

    feed.push(Position(latitude=-1.30, longitude=36.83))
    await _settle()
    records = _records(store)
    assert len(records) == 2
    assert {r.device_id for r in records} == {"dev-a"}
    assert {r.location_name for r in records} == {"Current Location"}
    assert tracking.view.current_location == Location(lat=-1.30, lng=36.83, name="Current Location")

    tracking.set_manual_mode(True)
    await _settle()
    assert feed.watcher_count == 0
    feed.push(Position(latitude=-1.31, longitude=36.84))
    await _settle()
    assert len(_records(store)) == 2
    await tracking.close()


@pytest.mark.asyncio
async def test_watch_errors_are_reported_without_stopping_sampling() -> None:
    store = InMemoryRecordStore()
    feed = QueuePositionFeed()
    tracking = TrackingCoordinator(store, "dev-a", feed=feed, clock=_ticking_clock())
    await _start_gps(tracking, feed, "veh-1")

    feed.push_error("GPS signal lost")
    await _settle()
    assert tracking.view.error == "Tracking error: GPS signal lost"
    assert feed.watcher_count == 1

    feed.push(Position(latitude=0.5, longitude=0.5))
    await _settle()
    assert len(_records(store)) == 2
    await tracking.close()


@pytest.mark.asyncio
async def test_stop_tracking_marks_record_and_releases_watch() -> None:
    store = InMemoryRecordStore()
    feed = QueuePositionFeed()
    tracking = TrackingCoordinator(store, "dev-a", feed=feed, clock=_ticking_clock())
    await tracking.start()
    record_id = await _start_gps(tracking, feed, "veh-1")

    assert await tracking.stop_tracking("veh-1", record_id)
    await _settle()

    (record,) = _records(store)
    assert record.is_tracking is False
    view = tracking.view
    assert view.is_tracking is False
    assert view.controlling_device_id is None
    assert view.phase is TrackingPhase.STOPPED
    assert feed.watcher_count == 0
    assert view.tracked_vehicles[0].is_tracking is False

    feed.push(Position(latitude=0.0, longitude=0.0))
    await _settle()
    assert len(_records(store)) == 1
    await tracking.close()


@pytest.mark.asyncio
async def test_stop_without_record_id_writes_nothing() -> None:
    store = InMemoryRecordStore()
    tracking = TrackingCoordinator(store, "dev-a")
    tracking.set_manual_mode(True)
    await tracking.start_tracking("veh-1", lat=1, lng=1)

    assert not await tracking.stop_tracking("veh-1")

    assert tracking.view.error == "No active tracking session found."
    assert _records(store)[0].is_tracking is True
    await tracking.close()


@pytest.mark.asyncio
async def test_newer_write_from_other_device_supersedes_controller() -> None:
    store = InMemoryRecordStore()
    clock = _ticking_clock()
    feed = QueuePositionFeed()
    device_a = TrackingCoordinator(store, "dev-a", feed=feed, clock=clock)
    # Never started: its tracked-vehicles view stays empty, like a device
    # acting on a snapshot taken before device A claimed the vehicle.
    device_b = TrackingCoordinator(store, "dev-b", clock=clock)
    device_b.set_manual_mode(True)
    await device_a.start()
    await _start_gps(device_a, feed, "veh-1")

    assert await device_b.start_tracking("veh-1", lat=5, lng=5) is not None
    await _settle()

    view = device_a.view
    assert view.phase is TrackingPhase.SUPERSEDED
    assert view.controlling_device_id == "dev-b"
    assert feed.watcher_count == 0

    feed.push(Position(latitude=0.0, longitude=0.0))
    await _settle()
    assert [r.device_id for r in _records(store)] == ["dev-a", "dev-b"]
    assert device_b.view.phase is TrackingPhase.CONTROLLING

    await device_a.close()
    await device_b.close()


@pytest.mark.asyncio
async def test_vehicle_can_be_claimed_after_controller_stops() -> None:
    store = InMemoryRecordStore()
    clock = _ticking_clock()
    device_a = TrackingCoordinator(store, "dev-a", clock=clock)
    device_b = TrackingCoordinator(store, "dev-b", clock=clock)
    for device in (device_a, device_b):
        await device.start()
        device.set_manual_mode(True)

    first = await device_a.start_tracking("veh-1", lat=1, lng=1)
    await _settle()
    assert await device_a.stop_tracking("veh-1", first)
    await _settle()

    second = await device_b.start_tracking("veh-1", lat=2, lng=2)
    await _settle()

    assert second is not None
    assert device_b.view.phase is TrackingPhase.CONTROLLING
    assert device_a.view.controlling_device_id == "dev-b"
    assert device_a.view.phase is TrackingPhase.STOPPED
    assert [r.id for r in device_a.view.tracked_vehicles] == [second]

    await device_a.close()
    await device_b.close()


@pytest.mark.asyncio
async def test_start_tracking_validation_messages() -> None:
    store = InMemoryRecordStore()
    tracking = TrackingCoordinator(store, "dev-a")

    assert await tracking.start_tracking() is None
    assert tracking.view.error == "Please select a vehicle to track."

    assert await tracking.start_tracking("veh-1") is None
    assert tracking.view.error == "Geolocation is not available on this device."

    tracking.set_manual_mode(True)
    assert await tracking.start_tracking("veh-1", lat="", lng="2") is None
    assert tracking.view.error == "Please enter both latitude and longitude values."
    assert await tracking.start_tracking("veh-1", lat="abc", lng="2") is None
    assert tracking.view.error == "Please enter valid coordinates."
    assert await tracking.start_tracking("veh-1", lat="95", lng="2") is None
    assert tracking.view.error == "Please enter valid coordinates."

    assert _records(store) == []
    await tracking.close()


@pytest.mark.parametrize(("lat", "lng"), [(None, 1), ("nan", "1"), (0, 180.5)])
def test_parse_coordinates_rejects_bad_input(lat: object, lng: object) -> None:
    with pytest.raises(FleetValidationError):
        parse_coordinates(lat, lng)


@pytest.mark.asyncio
async def test_location_failure_resets_to_idle() -> None:
    feed = QueuePositionFeed()
    tracking = TrackingCoordinator(InMemoryRecordStore(), "dev-a", feed=feed)

    pending = asyncio.ensure_future(tracking.start_tracking("veh-1"))
    await _settle()
    assert tracking.view.phase is TrackingPhase.REQUESTING
    feed.push_error("User denied Geolocation", code=1)

    assert await pending is None
    view = tracking.view
    assert view.error == "Unable to get your location: User denied Geolocation"
    assert view.phase is TrackingPhase.IDLE
    assert view.is_tracking is False
    await tracking.close()


@pytest.mark.asyncio
async def test_store_failure_is_surfaced() -> None:
    tracking = TrackingCoordinator(_FailingCreateStore(), "dev-a")
    tracking.set_manual_mode(True)

    assert await tracking.start_tracking("veh-1", lat=1, lng=1) is None

    assert tracking.view.error == "Failed to save location: backend unavailable"
    await tracking.close()


@pytest.mark.asyncio
async def test_remove_from_tracking() -> None:
    store = InMemoryRecordStore()
    tracking = TrackingCoordinator(store, "dev-a", clock=_ticking_clock())
    await tracking.start()
    tracking.set_manual_mode(True)
    record_id = await tracking.start_tracking("veh-1", lat=1, lng=1)
    await _settle()

    assert not await tracking.remove_from_tracking(None)
    assert tracking.view.error == "No tracking entry selected for removal."
    assert not await tracking.remove_from_tracking("unknown")
    assert tracking.view.error == "Tracking entry not found."

    assert await tracking.remove_from_tracking(record_id)
    await _settle()

    view = tracking.view
    assert view.error is None
    assert view.selected_vehicle_id is None
    assert view.phase is TrackingPhase.REMOVED
    assert view.tracked_vehicles == ()
    assert _records(store) == []
    await tracking.close()


@pytest.mark.asyncio
async def test_close_releases_watch_and_subscriptions() -> None:
    store = InMemoryRecordStore()
    feed = QueuePositionFeed()
    tracking = TrackingCoordinator(store, "dev-a", feed=feed, clock=_ticking_clock())
    await tracking.start()
    await _start_gps(tracking, feed, "veh-1")
    assert feed.watcher_count == 1
    assert store.listener_count() == 2

    await tracking.close()

    assert feed.watcher_count == 0
    assert store.listener_count() == 0
    assert not tracking.is_sampling


@pytest.mark.asyncio
async def test_changing_selection_stops_sampling_and_notifies_listeners() -> None:
    store = InMemoryRecordStore()
    feed = QueuePositionFeed()
    tracking = TrackingCoordinator(store, "dev-a", feed=feed, clock=_ticking_clock())
    views: list[TrackingView] = []
    remove = tracking.add_listener(views.append)
    await _start_gps(tracking, feed, "veh-1")

    tracking.select_vehicle("veh-2")
    await _settle()

    assert feed.watcher_count == 0
    assert tracking.view.selected_vehicle_id == "veh-2"
    assert tracking.view.phase is TrackingPhase.IDLE
    assert any(v.phase is TrackingPhase.CONTROLLING for v in views)

    remove()
    count = len(views)
    tracking.select_vehicle(None)
    assert len(views) == count
    await tracking.close()


@pytest.mark.asyncio
async def test_reselecting_own_active_vehicle_resumes_sampling() -> None:
    store = InMemoryRecordStore()
    feed = QueuePositionFeed()
    tracking = TrackingCoordinator(store, "dev-a", feed=feed, clock=_ticking_clock())
    await tracking.start()
    await _start_gps(tracking, feed, "veh-1")

    tracking.select_vehicle(None)
    await _settle()
    assert not tracking.is_sampling

    tracking.select_vehicle("veh-1")
    await _settle()

    assert tracking.view.phase is TrackingPhase.CONTROLLING
    assert tracking.view.controlling_device_id == "dev-a"
    assert tracking.is_sampling
    feed.push(Position(latitude=-1.30, longitude=36.83))
    await _settle()
    assert len(_records(store)) == 2
    await tracking.close()


@pytest.mark.asyncio
async def test_restarted_coordinator_resumes_own_session() -> None:
    store = InMemoryRecordStore()
    clock = _ticking_clock()
    feed = QueuePositionFeed()
    before = TrackingCoordinator(store, "dev-a", feed=feed, clock=clock)
    await before.start()
    await _start_gps(before, feed, "veh-1")
    await before.close()

    after = TrackingCoordinator(store, "dev-a", feed=feed, clock=clock)
    await after.start()
    after.select_vehicle("veh-1")
    await _settle()

    assert after.view.phase is TrackingPhase.CONTROLLING
    assert after.is_sampling
    feed.push(Position(latitude=-1.31, longitude=36.84))
    await _settle()
    records = _records(store)
    assert len(records) == 2
    assert {r.device_id for r in records} == {"dev-a"}
    await after.close()


@pytest.mark.asyncio
async def test_other_devices_active_session_is_not_resumed() -> None:
    store = InMemoryRecordStore()
    owner = TrackingCoordinator(store, "dev-a", clock=_ticking_clock())
    owner.set_manual_mode(True)
    await owner.start_tracking("veh-1", lat=1, lng=1)

    feed = QueuePositionFeed()
    viewer = TrackingCoordinator(store, "dev-b", feed=feed)
    viewer.select_vehicle("veh-1")
    await _settle()

    assert viewer.view.controlling_device_id == "dev-a"
    assert viewer.view.phase is TrackingPhase.IDLE
    assert not viewer.is_sampling
    await owner.close()
    await viewer.close()


@pytest.mark.asyncio
async def test_manual_coordinates_are_stored_exactly() -> None:
    store = InMemoryRecordStore()
    tracking = TrackingCoordinator(store, "dev-a")
    tracking.set_manual_mode(True)

    assert await tracking.start_tracking("veh-1", lat=200, lng=1) is None
    assert await tracking.start_tracking("veh-1", lat=1, lng=200) is None
    assert tracking.view.error == "Please enter valid coordinates."
    assert _records(store) == []

    assert await tracking.start_tracking("veh-1", lat="-1.2864", lng="36.8172") is not None
    (record,) = _records(store)
    assert (record.lat, record.lng) == (-1.2864, 36.8172)
    await tracking.close()
