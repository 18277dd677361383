"""Client configuration for fleettraq."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any

from fleettraq._constants import (
    ACCOUNT_COLLECTIONS,
    AUTH_BASE_URL,
    DEFAULT_CENTER,
    FALLBACK_ACCOUNT_ID,
    FIRESTORE_BASE_URL,
    TOKEN_BASE_URL,
)


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _default_state_dir() -> Path:
    return Path.home() / ".fleettraq"


@dataclasses.dataclass(frozen=True)
class GeolocationOptions:
    """Options handed to the position feed when sampling starts.

    These mirror the browser ``watchPosition`` options the dashboard
    used: high accuracy, a 5 second acquisition timeout and no cached
    fixes.
    """

    high_accuracy: bool = True
    timeout: float = 5.0
    maximum_age: float = 0.0


@dataclasses.dataclass(frozen=True)
class FleetConfig:
    """Client configuration.

    Parameters
    ----------
    api_key : str
        Web API key of the backing Firebase project.
    project_id : str
        Firebase/Firestore project id.
    database : str
        Firestore database id.
    auth_base_url : str
        Firebase Auth (identitytoolkit) REST base URL.
    token_base_url : str
        Secure token service base URL used to refresh id tokens.
    firestore_base_url : str
        Firestore REST base URL.
    state_dir : Path
        Directory holding locally persisted state (the device identity).
    poll_interval : float
        Seconds between result-set polls for live subscriptions on
        stores without a push channel.
    request_timeout : float
        Total timeout in seconds for a single HTTP request.
    fallback_account_id : str
        ``accountId`` written on tracking records when nobody is signed in.
    default_center : tuple of float
        ``(lat, lng)`` used as map center before any position is known.
    account_collections : tuple of str
        Collections purged (filtered by ``accountId``) when an account
        deletion executes.
    geolocation : GeolocationOptions
        Position feed options.
    """

    api_key: str = ""
    project_id: str = ""
    database: str = "(default)"
    auth_base_url: str = AUTH_BASE_URL
    token_base_url: str = TOKEN_BASE_URL
    firestore_base_url: str = FIRESTORE_BASE_URL
    state_dir: Path = dataclasses.field(default_factory=_default_state_dir)
    poll_interval: float = 2.0
    request_timeout: float = 15.0
    fallback_account_id: str = FALLBACK_ACCOUNT_ID
    default_center: tuple[float, float] = DEFAULT_CENTER
    account_collections: tuple[str, ...] = ACCOUNT_COLLECTIONS
    geolocation: GeolocationOptions = dataclasses.field(default_factory=GeolocationOptions)

    @property
    def documents_url(self) -> str:
        """Root URL of the project's Firestore documents."""
        return f"{self.firestore_base_url}/projects/{self.project_id}/databases/{self.database}/documents"

    @classmethod
    def from_env(cls, **overrides: Any) -> FleetConfig:
        """Create configuration from environment variables.

        Reads ``FLEETTRAQ_API_KEY``, ``FLEETTRAQ_PROJECT_ID`` and the
        optional ``FLEETTRAQ_*`` variables below. Explicit keyword
        arguments override environment values.
        """
        env = os.environ

        geo_kwargs: dict[str, Any] = {}
        geo_overrides = overrides.pop("geolocation", None)
        high_accuracy_env = env.get("FLEETTRAQ_GEO_HIGH_ACCURACY")
        if high_accuracy_env is not None:
            geo_kwargs["high_accuracy"] = _env_bool(high_accuracy_env, True)
        geo_timeout_env = env.get("FLEETTRAQ_GEO_TIMEOUT")
        if geo_timeout_env is not None:
            geo_kwargs["timeout"] = float(geo_timeout_env)
        max_age_env = env.get("FLEETTRAQ_GEO_MAXIMUM_AGE")
        if max_age_env is not None:
            geo_kwargs["maximum_age"] = float(max_age_env)
        if isinstance(geo_overrides, dict):
            geo_kwargs.update(geo_overrides)
        elif isinstance(geo_overrides, GeolocationOptions):
            geo_kwargs = dataclasses.asdict(geo_overrides)

        _ENV_CONFIG_MAP = {
            "FLEETTRAQ_API_KEY": "api_key",
            "FLEETTRAQ_PROJECT_ID": "project_id",
            "FLEETTRAQ_DATABASE": "database",
            "FLEETTRAQ_AUTH_BASE_URL": "auth_base_url",
            "FLEETTRAQ_TOKEN_BASE_URL": "token_base_url",
            "FLEETTRAQ_FIRESTORE_BASE_URL": "firestore_base_url",
            "FLEETTRAQ_FALLBACK_ACCOUNT_ID": "fallback_account_id",
        }
        config_kwargs: dict[str, Any] = {"geolocation": GeolocationOptions(**geo_kwargs)}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        state_dir_env = env.get("FLEETTRAQ_STATE_DIR")
        if state_dir_env is not None and "state_dir" not in overrides:
            config_kwargs["state_dir"] = Path(state_dir_env).expanduser()

        poll_env = env.get("FLEETTRAQ_POLL_INTERVAL")
        if poll_env is not None and "poll_interval" not in overrides:
            config_kwargs["poll_interval"] = float(poll_env)

        timeout_env = env.get("FLEETTRAQ_REQUEST_TIMEOUT")
        if timeout_env is not None and "request_timeout" not in overrides:
            config_kwargs["request_timeout"] = float(timeout_env)

        collections_env = env.get("FLEETTRAQ_ACCOUNT_COLLECTIONS")
        if collections_env is not None and "account_collections" not in overrides:
            config_kwargs["account_collections"] = tuple(
                name.strip() for name in collections_env.split(",") if name.strip()
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
