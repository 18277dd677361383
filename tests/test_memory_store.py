from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from fleettraq.exceptions import FleetStoreError
from fleettraq.records import Document, FieldFilter, InMemoryRecordStore, OrderBy, first_snapshot


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _sequential_ids() -> Callable[[], str]:
    counter = iter(range(1, 1000))
    return lambda: f"doc-{next(counter)}"


@pytest.mark.asyncio
async def test_subscribe_delivers_initial_and_filtered_snapshots() -> None:
    store = InMemoryRecordStore(id_factory=_sequential_ids())
    await store.create("tracking", {"vehicleId": "veh-a", "timestamp": "2026-01-01T00:00:01.000Z"})
    snapshots: list[list[Document]] = []

    sub = store.subscribe(
        "tracking",
        filters=(FieldFilter("vehicleId", "veh-a"),),
        order_by=OrderBy("timestamp", descending=True),
        on_snapshot=snapshots.append,
    )
    await _settle()
    assert [[d.id for d in snap] for snap in snapshots] == [["doc-1"]]

    await store.create("tracking", {"vehicleId": "veh-b", "timestamp": "2026-01-01T00:00:02.000Z"})
    await store.create("tracking", {"vehicleId": "veh-a", "timestamp": "2026-01-01T00:00:03.000Z"})
    await _settle()

    # Both writes land in one loop iteration and coalesce.
    assert len(snapshots) == 2
    assert [d.id for d in snapshots[-1]] == ["doc-3", "doc-1"]
    sub.close()


@pytest.mark.asyncio
async def test_closed_subscription_receives_nothing() -> None:
    store = InMemoryRecordStore()
    snapshots: list[list[Document]] = []
    sub = store.subscribe("sessions", on_snapshot=snapshots.append)
    sub.close()
    sub.close()
    await store.create("sessions", {"accountId": "acct-1"})
    await _settle()

    assert snapshots == []
    assert sub.closed
    assert store.listener_count() == 0


@pytest.mark.asyncio
async def test_update_and_delete() -> None:
    store = InMemoryRecordStore()
    record_id = await store.create("tracking", {"isTracking": True})
    await store.update("tracking", record_id, {"isTracking": False})
    assert store.documents("tracking")[0].fields == {"isTracking": False}

    await store.delete("tracking", record_id)
    await store.delete("tracking", record_id)
    assert store.documents("tracking") == []

    with pytest.raises(FleetStoreError):
        await store.update("tracking", record_id, {"isTracking": True})


@pytest.mark.asyncio
async def test_order_by_excludes_documents_missing_the_field() -> None:
    store = InMemoryRecordStore()
    await store.create("tracking", {"vehicleId": "veh-a"})
    keep = await store.create("tracking", {"vehicleId": "veh-a", "timestamp": "2026-01-01T00:00:00.000Z"})

    docs = await first_snapshot(store, "tracking", order_by=OrderBy("timestamp"))

    assert [d.id for d in docs] == [keep]
    assert store.listener_count("tracking") == 0


@pytest.mark.asyncio
async def test_snapshot_documents_are_copies() -> None:
    store = InMemoryRecordStore()
    record_id = await store.create("deletionRequests", {"approvals": [{"deviceId": "dev-a"}]})
    docs = await first_snapshot(store, "deletionRequests")
    docs[0].fields["approvals"].append({"deviceId": "dev-b"})  # type: ignore[attr-defined]

    assert store.documents("deletionRequests")[0].fields["approvals"] == [{"deviceId": "dev-a"}]
    assert docs[0].id == record_id
