"""Redaction for Firebase request and response bodies in DEBUG logs.

Identity Toolkit and Secure Token bodies carry passwords, ID tokens and
refresh tokens under camelCase or snake_case keys; Firestore bodies carry
account emails inside typed ``fields`` maps. Every request URL carries the
web API key as ``?key=``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

REDACTED = "<redacted>"

# Compared after lowercasing and dropping underscores, so ``idToken`` and
# ``id_token`` share one entry.
_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "newpassword",
        "idtoken",
        "refreshtoken",
        "accesstoken",
        "oauthaccesstoken",
        "token",
        "authorization",
        "oobcode",
        "key",
    }
)
_EMAIL_KEYS: frozenset[str] = frozenset({"email", "newemail"})

_JWT = re.compile(r"^eyJ[\w-]+\.[\w-]+\.[\w-]*$")


def _normalise_key(key: object) -> str:
    return str(key).replace("_", "").lower()


def _mask_email(value: Any) -> Any:
    if isinstance(value, Mapping):
        # Firestore typed value: {"stringValue": "ops@example.com"}
        return {k: _mask_email(v) for k, v in value.items()}
    if not isinstance(value, str) or "@" not in value:
        return value
    local, _, domain = value.partition("@")
    return f"{local[:1]}***@{domain}"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to log.

    Secret keys are replaced by ``<redacted>``, email keys are partially
    masked, JWT-shaped strings are hidden wherever they appear and long
    strings are truncated to *max_string* characters.
    """
    if _depth > 20:
        return "<max-depth>"

    if isinstance(value, str):
        if _JWT.match(value):
            return "<jwt>"
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for k, v in value.items():
            key = _normalise_key(k)
            if key in _SECRET_KEYS:
                out[str(k)] = REDACTED
            elif key in _EMAIL_KEYS:
                out[str(k)] = _mask_email(v)
            else:
                out[str(k)] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return out

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)


def redact_url(url: str) -> str:
    """Hide the ``key=`` API key in *url*, keeping the other query parameters."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, REDACTED if k.lower() == "key" else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit(parts._replace(query=urlencode(query, safe="<>")))
