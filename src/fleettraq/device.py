"""Stable per-installation device identity."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path

from fleettraq.exceptions import FleetConfigError

_logger = logging.getLogger(__name__)

DEVICE_FILE_NAME = "device.json"


class DeviceIdentity:
    """Opaque device id generated once and persisted under a state directory.

    The id never changes for a given state directory, which is what makes
    it usable as the "controlling device" marker on tracking records and as
    the per-device key for deletion quorum sessions.
    """

    def __init__(self, device_id: str) -> None:
        if not device_id or not device_id.strip():
            raise FleetConfigError("device id must be non-empty")
        self._device_id = device_id.strip()

    @property
    def device_id(self) -> str:
        return self._device_id

    def __str__(self) -> str:
        return self._device_id

    def __repr__(self) -> str:
        return f"DeviceIdentity({self._device_id!r})"

    @classmethod
    def load_or_create(cls, state_dir: Path) -> DeviceIdentity:
        """Read the persisted id from *state_dir*, generating one on first use."""
        path = Path(state_dir) / DEVICE_FILE_NAME
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise FleetConfigError(f"Unreadable device identity file {path}: {exc}") from exc
            device_id = data.get("deviceId") if isinstance(data, dict) else None
            if isinstance(device_id, str) and device_id.strip():
                return cls(device_id)
            _logger.warning("Device identity file %s has no deviceId; regenerating", path)

        identity = cls(str(uuid.uuid4()))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps({"deviceId": identity.device_id}), encoding="utf-8")
        except OSError as exc:
            raise FleetConfigError(f"Cannot persist device identity to {path}: {exc}") from exc
        _logger.debug("Generated device id %s at %s", identity.device_id, path)
        return identity
