from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta

import pytest

from fleettraq.config import GeolocationOptions
from fleettraq.exceptions import FleetGeolocationError
from fleettraq.geolocation import TIMEOUT, PositionError, QueuePositionFeed
from fleettraq.models import Position

_NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _fix(lat: float, age: float = 0.0) -> Position:
    return Position(latitude=lat, longitude=36.8, captured_at=_NOW - timedelta(seconds=age))


@pytest.mark.asyncio
async def test_current_position_returns_fresh_cached_fix() -> None:
    feed = QueuePositionFeed(clock=lambda: _NOW)
    feed.push(_fix(1.0, age=2.0))

    position = await feed.current_position(GeolocationOptions(maximum_age=5.0))

    assert position.latitude == 1.0


@pytest.mark.asyncio
async def test_current_position_waits_for_next_fix() -> None:
    feed = QueuePositionFeed(clock=lambda: _NOW)
    feed.push(_fix(1.0, age=2.0))

    pending = asyncio.ensure_future(feed.current_position(GeolocationOptions(maximum_age=0.0, timeout=1.0)))
    await asyncio.sleep(0)
    feed.push(_fix(2.0))

    assert (await pending).latitude == 2.0


@pytest.mark.asyncio
async def test_current_position_times_out() -> None:
    feed = QueuePositionFeed()

    with pytest.raises(FleetGeolocationError) as exc_info:
        await feed.current_position(GeolocationOptions(timeout=0.01))

    assert exc_info.value.code == TIMEOUT


@pytest.mark.asyncio
async def test_watch_yields_fixes_and_errors_then_releases() -> None:
    feed = QueuePositionFeed()
    received: list[object] = []

    async def _consume() -> None:
        async with contextlib.aclosing(feed.watch(GeolocationOptions())) as events:
            async for event in events:
                received.append(event)

    task = asyncio.ensure_future(_consume())
    await asyncio.sleep(0)
    assert feed.watcher_count == 1

    feed.push(_fix(1.0))
    feed.push_error("GPS signal lost")
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert isinstance(received[0], Position)
    assert received[1] == PositionError(code=2, message="GPS signal lost")
    assert feed.watcher_count == 0
