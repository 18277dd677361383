"""Position feeds.

A :class:`PositionFeed` offers a single-shot fix and a continuous watch.
The watch is an async iterator; consuming it inside a task gives the
caller an explicit handle (the task) to cancel, and the iterator's
``finally`` releases the underlying watch registration on every exit path.
Errors reported while watching are yielded as :class:`PositionError`
items rather than raised, because the platform keeps the watch alive and
keeps delivering fixes after a transient failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from fleettraq.config import GeolocationOptions
from fleettraq.exceptions import FleetGeolocationError
from fleettraq.models._base import utcnow
from fleettraq.models.location import Position

_logger = logging.getLogger(__name__)

PERMISSION_DENIED = 1
POSITION_UNAVAILABLE = 2
TIMEOUT = 3


class PositionError(BaseModel):
    """Non-fatal error event emitted by a watch."""

    model_config = ConfigDict(frozen=True)

    code: int = POSITION_UNAVAILABLE
    message: str = ""


WatchEvent = Position | PositionError


class PositionFeed(Protocol):
    async def current_position(self, options: GeolocationOptions) -> Position: ...

    def watch(self, options: GeolocationOptions) -> AsyncGenerator[WatchEvent, None]: ...


class QueuePositionFeed:
    """Feed driven by fixes pushed in by the host process.

    Suitable for bridging a GPS daemon, a driver app relaying fixes, or a
    test. ``current_position`` returns the latest fix if it is no older than
    ``options.maximum_age`` and otherwise waits up to ``options.timeout``
    seconds for the next one.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._latest: Position | None = None
        self._queues: set[asyncio.Queue[WatchEvent]] = set()
        self._waiters: list[asyncio.Future[Position]] = []

    @property
    def watcher_count(self) -> int:
        """Number of live watch registrations."""
        return len(self._queues)

    @property
    def latest(self) -> Position | None:
        return self._latest

    def push(self, position: Position) -> None:
        self._latest = position
        for queue in list(self._queues):
            queue.put_nowait(position)
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(position)

    def push_error(self, message: str, *, code: int = POSITION_UNAVAILABLE) -> None:
        error = PositionError(code=code, message=message)
        for queue in list(self._queues):
            queue.put_nowait(error)
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_exception(FleetGeolocationError(message, code=code))

    async def current_position(self, options: GeolocationOptions) -> Position:
        latest = self._latest
        if latest is not None and (self._clock() - latest.captured_at).total_seconds() <= options.maximum_age:
            return latest

        fut: asyncio.Future[Position] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            return await asyncio.wait_for(fut, options.timeout if options.timeout > 0 else None)
        except TimeoutError as exc:
            raise FleetGeolocationError("Timeout expired", code=TIMEOUT) from exc
        finally:
            if fut in self._waiters:
                self._waiters.remove(fut)

    async def watch(self, options: GeolocationOptions) -> AsyncGenerator[WatchEvent, None]:
        queue: asyncio.Queue[WatchEvent] = asyncio.Queue()
        self._queues.add(queue)
        _logger.debug("Position watch started (high_accuracy=%s)", options.high_accuracy)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
            _logger.debug("Position watch released")
