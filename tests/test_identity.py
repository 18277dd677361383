from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from fleettraq.config import FleetConfig
from fleettraq.exceptions import (
    FleetAccountGoneError,
    FleetAuthenticationError,
    FleetConfigError,
    FleetIdentityError,
    FleetReauthenticationRequiredError,
    FleetTransportError,
)
from fleettraq.identity import FirebaseIdentityProvider, InMemoryIdentityProvider

_SIGN_IN = {
    "localId": "uid-1",
    "email": "ops@example.com",
    "idToken": "id-1",
    "refreshToken": "refresh-1",
    "expiresIn": "3600",
}


def _auth_error(code: str, status: int = 400) -> FleetTransportError:
    return FleetTransportError(
        f"HTTP {status}",
        status_code=status,
        payload={"error": {"code": status, "message": code}},
    )


class _ScriptedTransport:
    def __init__(self, *responses: Any) -> None:
        self.calls: list[tuple[str, str, Mapping[str, Any] | None]] = []
        self._responses = list(responses)

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        payload: Mapping[str, Any] | None = None,
        params: Sequence[tuple[str, str]] | None = None,
        bearer: str | None = None,
    ) -> Any:
        self.calls.append((method, url, payload))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _provider(*responses: Any) -> tuple[FirebaseIdentityProvider, _ScriptedTransport]:
    transport = _ScriptedTransport(*responses)
    return FirebaseIdentityProvider(FleetConfig(api_key="k", project_id="demo"), transport), transport


def test_firebase_provider_requires_api_key() -> None:
    with pytest.raises(FleetConfigError):
        FirebaseIdentityProvider(FleetConfig(), _ScriptedTransport())


@pytest.mark.asyncio
async def test_sign_in_sets_current_user_and_token() -> None:
    provider, transport = _provider(_SIGN_IN)

    user = await provider.sign_in("ops@example.com", "secret")

    assert user.id == "uid-1"
    assert provider.current_user == user
    assert await provider.id_token() == "id-1"
    method, url, payload = transport.calls[0]
    assert method == "POST"
    assert url.endswith("/accounts:signInWithPassword?key=k")
    assert payload == {"email": "ops@example.com", "password": "secret", "returnSecureToken": True}


@pytest.mark.asyncio
async def test_bad_password_maps_to_authentication_error() -> None:
    provider, _ = _provider(_auth_error("INVALID_LOGIN_CREDENTIALS"))

    with pytest.raises(FleetAuthenticationError) as exc_info:
        await provider.sign_in("ops@example.com", "wrong")

    assert exc_info.value.code == "INVALID_LOGIN_CREDENTIALS"
    assert provider.current_user is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("CREDENTIAL_TOO_OLD_LOGIN_AGAIN", FleetReauthenticationRequiredError),
        ("TOKEN_EXPIRED", FleetReauthenticationRequiredError),
        ("USER_NOT_FOUND", FleetAccountGoneError),
        ("INTERNAL_ERROR : backend", FleetIdentityError),
    ],
)
async def test_delete_account_error_mapping(code: str, expected: type[Exception]) -> None:
    provider, _ = _provider(_SIGN_IN, _auth_error(code))
    await provider.sign_in("ops@example.com", "secret")

    with pytest.raises(expected):
        await provider.delete_account()

    assert provider.current_user is not None


@pytest.mark.asyncio
async def test_reauthenticate_then_delete_account() -> None:
    provider, transport = _provider(_SIGN_IN, {**_SIGN_IN, "idToken": "id-2"}, {})
    await provider.sign_in("ops@example.com", "secret")

    await provider.reauthenticate("secret")
    await provider.delete_account()

    assert transport.calls[-1][2] == {"idToken": "id-2"}
    assert provider.current_user is None


@pytest.mark.asyncio
async def test_memory_provider_shares_accounts_between_devices() -> None:
    first = InMemoryIdentityProvider()
    user = await first.sign_up("ops@example.com", "secret")
    second = first.new_device()
    assert second.current_user is None

    assert await second.sign_in("OPS@example.com", "secret") == user
    await first.delete_account()

    assert first.current_user is None
    with pytest.raises(FleetAccountGoneError):
        await second.delete_account()


@pytest.mark.asyncio
async def test_memory_provider_stale_login_requires_reauthentication() -> None:
    now = [0.0]
    provider = InMemoryIdentityProvider(recent_login_window=60.0, clock=lambda: now[0])
    await provider.sign_up("ops@example.com", "secret")
    now[0] = 120.0

    with pytest.raises(FleetReauthenticationRequiredError):
        await provider.delete_account()
    with pytest.raises(FleetAuthenticationError):
        await provider.reauthenticate("wrong")

    await provider.reauthenticate("secret")
    await provider.delete_account()
    assert provider.current_user is None


@pytest.mark.asyncio
async def test_memory_provider_rejects_weak_and_duplicate_sign_up() -> None:
    provider = InMemoryIdentityProvider()
    with pytest.raises(FleetIdentityError) as weak:
        await provider.sign_up("ops@example.com", "123")
    assert weak.value.code == "WEAK_PASSWORD"

    await provider.sign_up("ops@example.com", "secret")
    with pytest.raises(FleetIdentityError) as duplicate:
        await provider.sign_up("ops@example.com", "secret")
    assert duplicate.value.code == "EMAIL_EXISTS"
