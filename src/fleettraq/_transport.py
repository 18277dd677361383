"""JSON-over-HTTP transport shared by the Firebase identity and store clients."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import aiohttp

from fleettraq._constants import USER_AGENT
from fleettraq._redact import redact_for_log, redact_url
from fleettraq.exceptions import FleetTransportError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the REST clients.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`JsonTransport`) concrete.
    """

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
        params: Sequence[tuple[str, str]] | None = None,
        bearer: str | None = None,
    ) -> Any: ...


def error_code(exc: FleetTransportError) -> str:
    """Extract the Google API ``error.message`` code from a failed response.

    Firebase Auth reports e.g. ``"CREDENTIAL_TOO_OLD_LOGIN_AGAIN"`` or
    ``"INVALID_PASSWORD : ..."``; only the leading token is returned.
    """
    error = exc.payload.get("error")
    if not isinstance(error, dict):
        return ""
    message = error.get("message")
    if not isinstance(message, str):
        return ""
    return message.split(":", 1)[0].strip()


class JsonTransport:
    """Thin aiohttp wrapper that sends/receives JSON and maps failures."""

    def __init__(self, http_session: aiohttp.ClientSession, *, timeout: float = 15.0) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
        params: Sequence[tuple[str, str]] | None = None,
        bearer: str | None = None,
    ) -> Any:
        """Send *payload* as JSON and return the decoded JSON reply.

        Empty bodies (e.g. Firestore ``DELETE``) decode to ``{}``.
        Non-2xx responses raise :class:`FleetTransportError` carrying the
        decoded error body when there is one.
        """
        headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if bearer:
            headers["authorization"] = f"Bearer {bearer}"

        _logger.debug("%s %s %s", method, redact_url(url), redact_for_log(dict(payload or {})))

        try:
            async with self._http.request(
                method,
                url,
                json=dict(payload) if payload is not None else None,
                params=list(params) if params is not None else None,
                headers=headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise FleetTransportError(f"Request to {redact_url(url)} failed: {exc}", url=url) from exc
        except TimeoutError as exc:
            raise FleetTransportError(f"Request to {redact_url(url)} timed out", url=url) from exc

        body: Any = {}
        if text.strip():
            try:
                body = json.loads(text)
            except json.JSONDecodeError as exc:
                if 200 <= status < 300:
                    raise FleetTransportError(
                        f"Invalid JSON from {redact_url(url)}: {text[:200]}",
                        status_code=status,
                        url=url,
                    ) from exc
                body = {}

        if not 200 <= status < 300:
            raise FleetTransportError(
                f"HTTP {status} from {redact_url(url)}: {text[:200]}",
                status_code=status,
                url=url,
                payload=body if isinstance(body, dict) else {},
            )

        return body
