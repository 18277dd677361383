#!/usr/bin/env python3
"""Live fleettraq probe against a Firebase project.

Signs in with FLEETTRAQ_EMAIL / FLEETTRAQ_PASSWORD (project settings come
from the usual FLEETTRAQ_* variables, see ``FleetConfig.from_env``) and runs
one of:

- ``tracked``: print the latest tracking record per vehicle,
- ``track``: write a manual position for a vehicle from this device,
- ``stop``: stop this device's active tracking of a vehicle,
- ``quorum``: print the deletion quorum state of the account.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from fleettraq import FleetClient, FleetConfig, FleetError, TrackingCoordinator  # noqa: E402
from fleettraq.records import first_snapshot  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe fleettraq tracking and deletion state.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("tracked", help="List tracked vehicles.")

    track = sub.add_parser("track", help="Write a manual position.")
    track.add_argument("--vehicle", required=True, help="Vehicle id.")
    track.add_argument("--lat", required=True, help="Latitude in degrees.")
    track.add_argument("--lng", required=True, help="Longitude in degrees.")
    track.add_argument("--name", default=None, help="Location label.")

    stop = sub.add_parser("stop", help="Stop tracking a vehicle.")
    stop.add_argument("--vehicle", required=True, help="Vehicle id.")

    sub.add_parser("quorum", help="Show deletion quorum state.")
    return parser.parse_args()


def _print_tracked(tracking: TrackingCoordinator) -> None:
    records = tracking.view.tracked_vehicles
    if not records:
        print("No tracked vehicles")
        return
    for record in records:
        state = "tracking" if record.is_tracking else "stopped"
        print(
            f"{record.vehicle_id:<24} {state:<9} {record.lat:>10.5f} {record.lng:>11.5f} "
            f"{record.timestamp.isoformat()} device={record.device_id}"
        )


async def _settled_tracking(client: FleetClient) -> TrackingCoordinator:
    tracking = client.tracking()
    await tracking.start()
    # One poll interval plus slack so the first snapshot has landed.
    await asyncio.sleep(client.config.poll_interval + 1.0)
    return tracking


async def _run(args: argparse.Namespace) -> int:
    email = os.environ.get("FLEETTRAQ_EMAIL", "")
    password = os.environ.get("FLEETTRAQ_PASSWORD", "")
    if not email or not password:
        print("FLEETTRAQ_EMAIL and FLEETTRAQ_PASSWORD must be set", file=sys.stderr)
        return 2

    async with FleetClient(FleetConfig.from_env()) as client:
        await client.sign_in(email, password)
        print(f"Signed in as {client.current_user.id if client.current_user else '?'} on device {client.device_id}")

        if args.command == "quorum":
            deletion = client.deletion()
            if not await deletion.start():
                print(deletion.view.error, file=sys.stderr)
                return 1
            await asyncio.sleep(client.config.poll_interval + 1.0)
            view = deletion.view
            print(f"phase={view.phase} approved={view.approved_count}/{view.required_count}")
            for session in view.sessions:
                print(f"  {session.device_id:<38} approved={session.approved_deletion} last={session.last_active}")
            await deletion.close()
            return 0

        tracking = await _settled_tracking(client)
        try:
            if args.command == "tracked":
                _print_tracked(tracking)
                return 0

            if args.command == "track":
                tracking.set_manual_mode(True)
                record_id = await tracking.start_tracking(
                    args.vehicle, lat=args.lat, lng=args.lng, location_name=args.name
                )
                if record_id is None:
                    print(tracking.view.error, file=sys.stderr)
                    return 1
                print(f"Wrote tracking record {record_id}")
                return 0

            documents = await first_snapshot(client.store, "tracking")
            mine = [
                doc
                for doc in documents
                if doc.fields.get("vehicleId") == args.vehicle
                and doc.fields.get("deviceId") == client.device_id
                and doc.fields.get("isTracking")
            ]
            if not mine:
                print("No active tracking session found.", file=sys.stderr)
                return 1
            for doc in mine:
                if not await tracking.stop_tracking(args.vehicle, doc.id):
                    print(tracking.view.error, file=sys.stderr)
                    return 1
            print(f"Stopped {len(mine)} record(s)")
            return 0
        finally:
            await tracking.close()


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except FleetError as exc:
        print(f"[probe] {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
