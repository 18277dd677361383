"""In-process real-time record store.

Behaves like a push-based document database from the caller's point of
view: writes return once applied, and every live query gets the full,
re-evaluated result set delivered asynchronously on the event loop after
each change. Bursts of writes inside one loop iteration coalesce into a
single snapshot per subscription.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from fleettraq.exceptions import FleetStoreError
from fleettraq.records.base import (
    Document,
    ErrorCallback,
    FieldFilter,
    OrderBy,
    SnapshotCallback,
    Subscription,
    apply_query,
)

_logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex[:20]


class _Listener:
    """One live query registered on a collection."""

    def __init__(
        self,
        store: InMemoryRecordStore,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: OrderBy | None,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        self.store = store
        self.collection = collection
        self.filters = tuple(filters)
        self.order_by = order_by
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True
        self._scheduled: asyncio.Handle | None = None

    def schedule(self, loop: asyncio.AbstractEventLoop) -> None:
        if not self.active or self._scheduled is not None:
            return
        self._scheduled = loop.call_soon(self._deliver)

    def cancel(self) -> None:
        self.active = False
        if self._scheduled is not None:
            self._scheduled.cancel()
            self._scheduled = None

    def _deliver(self) -> None:
        self._scheduled = None
        if not self.active:
            return
        snapshot = apply_query(
            self.store.documents(self.collection),
            filters=self.filters,
            order_by=self.order_by,
        )
        try:
            self.on_snapshot(snapshot)
        except Exception:
            _logger.exception("Snapshot listener for %s raised", self.collection)


class InMemoryRecordStore:
    """Dictionary-backed :class:`~fleettraq.records.base.RecordStore`."""

    def __init__(self, *, id_factory: Callable[[], str] = _new_id) -> None:
        self._id_factory = id_factory
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: dict[str, list[_Listener]] = {}

    def documents(self, collection: str) -> list[Document]:
        """Current contents of *collection* (deep copies, insertion order)."""
        docs = self._collections.get(collection, {})
        return [Document(id=doc_id, fields=copy.deepcopy(fields)) for doc_id, fields in docs.items()]

    def listener_count(self, collection: str | None = None) -> int:
        """Number of open subscriptions, optionally for one collection."""
        if collection is not None:
            return len(self._listeners.get(collection, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    async def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        if not collection:
            raise FleetStoreError("Collection name is required", operation="create")
        record_id = self._id_factory()
        self._collections.setdefault(collection, {})[record_id] = copy.deepcopy(dict(fields))
        _logger.debug("create %s/%s", collection, record_id)
        self._notify(collection)
        return record_id

    async def update(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> None:
        existing = self._collections.get(collection, {}).get(record_id)
        if existing is None:
            raise FleetStoreError(
                f"No document to update: {collection}/{record_id}",
                operation="update",
                collection=collection,
            )
        existing.update(copy.deepcopy(dict(fields)))
        _logger.debug("update %s/%s keys=%s", collection, record_id, sorted(fields))
        self._notify(collection)

    async def delete(self, collection: str, record_id: str) -> None:
        removed = self._collections.get(collection, {}).pop(record_id, None)
        if removed is None:
            return
        _logger.debug("delete %s/%s", collection, record_id)
        self._notify(collection)

    def subscribe(
        self,
        collection: str,
        *,
        filters: Sequence[FieldFilter] = (),
        order_by: OrderBy | None = None,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        loop = asyncio.get_running_loop()
        listener = _Listener(self, collection, filters, order_by, on_snapshot, on_error)
        self._listeners.setdefault(collection, []).append(listener)
        listener.schedule(loop)

        def _close() -> None:
            listener.cancel()
            listeners = self._listeners.get(collection, [])
            if listener in listeners:
                listeners.remove(listener)

        return Subscription(_close)

    def _notify(self, collection: str) -> None:
        listeners = self._listeners.get(collection)
        if not listeners:
            return
        loop = asyncio.get_running_loop()
        for listener in list(listeners):
            listener.schedule(loop)
