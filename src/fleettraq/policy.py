"""Deterministic arbitration rules shared by the coordinators.

Nothing here touches the store; every function is a pure reduction over
already-validated records so the coordinators and tests can rely on the
same answers.

Ordering is last-write-wins on the client-supplied ``timestamp``. That is
not a trustworthy total order across devices: two devices can both pass
:func:`blocking_controller` before either write lands, and the newer
timestamp then supersedes the other once snapshots settle.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from fleettraq.models.deletion import AccountSession, DeletionRequest
from fleettraq.models.tracking import TrackingRecord


def latest_per_vehicle(records: Iterable[TrackingRecord]) -> list[TrackingRecord]:
    """Reduce to one record per vehicle, newest timestamp wins.

    On equal timestamps the record seen first is kept, so a snapshot that is
    already ordered newest-first resolves ties the same way the store did.
    The result is ordered newest first.
    """
    latest: dict[str, TrackingRecord] = {}
    for record in records:
        current = latest.get(record.vehicle_id)
        if current is None or record.timestamp > current.timestamp:
            latest[record.vehicle_id] = record
    return sorted(latest.values(), key=lambda r: r.timestamp, reverse=True)


def newest(records: Iterable[TrackingRecord]) -> TrackingRecord | None:
    result: TrackingRecord | None = None
    for record in records:
        if result is None or record.timestamp > result.timestamp:
            result = record
    return result


def controlling_device(records: Iterable[TrackingRecord]) -> str | None:
    """Device whose newest active record is the newest active record overall."""
    active = newest(r for r in records if r.is_tracking)
    return active.device_id if active is not None else None


def blocking_controller(
    tracked: Sequence[TrackingRecord],
    vehicle_id: str,
    device_id: str,
) -> str | None:
    """Return the other device holding *vehicle_id*, or ``None`` if free to claim.

    *tracked* is the latest-per-vehicle view. A vehicle is held when its
    latest record is still active and was written by a different device.
    """
    for record in tracked:
        if record.vehicle_id == vehicle_id and record.is_tracking and record.device_id != device_id:
            return record.device_id
    return None


def approval_counts(sessions: Sequence[AccountSession]) -> tuple[int, int]:
    """``(approved, required)`` for the deletion quorum."""
    return sum(1 for s in sessions if s.approved_deletion), len(sessions)


def quorum_met(sessions: Sequence[AccountSession]) -> bool:
    """Every registered session approved. An empty session set never meets quorum."""
    approved, required = approval_counts(sessions)
    return required > 0 and approved == required


def deletion_executor(request: DeletionRequest | None, sessions: Sequence[AccountSession]) -> str | None:
    """Device that runs the purge once quorum is met.

    The initiating device, or the lowest registered device id when the
    initiator's session is gone.
    """
    if request is None:
        return None
    devices = {s.device_id for s in sessions}
    if request.initiated_by in devices:
        return request.initiated_by
    return min(devices) if devices else None
