"""Firebase Auth REST identity provider."""

from __future__ import annotations

import logging
from typing import Any

from fleettraq._constants import ACCOUNT_GONE_CODES, BAD_CREDENTIAL_CODES, REAUTH_REQUIRED_CODES
from fleettraq._transport import Transport, error_code
from fleettraq.config import FleetConfig
from fleettraq.exceptions import (
    FleetAccountGoneError,
    FleetAuthenticationError,
    FleetConfigError,
    FleetIdentityError,
    FleetReauthenticationRequiredError,
    FleetTransportError,
)
from fleettraq.models.user import AuthToken, User

_logger = logging.getLogger(__name__)


def _parse_auth_response(response: Any, *, endpoint: str) -> tuple[User, AuthToken]:
    if not isinstance(response, dict):
        raise FleetIdentityError(f"{endpoint} returned a non-object response")
    local_id = response.get("localId") or response.get("user_id")
    id_token = response.get("idToken") or response.get("id_token")
    refresh_token = response.get("refreshToken") or response.get("refresh_token")
    if not local_id or not id_token or not refresh_token:
        raise FleetIdentityError(f"{endpoint} response missing localId/idToken/refreshToken")
    expires_in = response.get("expiresIn") or response.get("expires_in") or 3600
    user = User(id=str(local_id), email=response.get("email"))
    token = AuthToken(id_token=str(id_token), refresh_token=str(refresh_token), expires_in=float(expires_in))
    return user, token


class FirebaseIdentityProvider:
    """:class:`~fleettraq.identity.base.IdentityProvider` backed by Firebase Auth.

    Usage::

        identity = FirebaseIdentityProvider(config, JsonTransport(http))
        await identity.sign_in("ops@example.com", "secret")
        token = await identity.id_token()
    """

    def __init__(self, config: FleetConfig, transport: Transport) -> None:
        if not config.api_key:
            raise FleetConfigError("FleetConfig.api_key is required for Firebase authentication")
        self._config = config
        self._transport = transport
        self._user: User | None = None
        self._token: AuthToken | None = None

    @property
    def current_user(self) -> User | None:
        return self._user

    def _auth_url(self, method: str) -> str:
        return f"{self._config.auth_base_url}/accounts:{method}?key={self._config.api_key}"

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            return await self._transport.request_json("POST", self._auth_url(method), payload=payload)
        except FleetTransportError as exc:
            code = error_code(exc)
            endpoint = f"accounts:{method}"
            if code in REAUTH_REQUIRED_CODES:
                raise FleetReauthenticationRequiredError(f"{endpoint} requires a recent login", code=code) from exc
            if code in ACCOUNT_GONE_CODES:
                raise FleetAccountGoneError(f"{endpoint}: account no longer exists", code=code) from exc
            if code in BAD_CREDENTIAL_CODES:
                raise FleetAuthenticationError(f"{endpoint} rejected the credentials ({code})", code=code) from exc
            raise FleetIdentityError(f"{endpoint} failed: {exc}", code=code) from exc

    async def _password_grant(self, method: str, email: str, password: str) -> tuple[User, AuthToken]:
        response = await self._call(method, {"email": email, "password": password, "returnSecureToken": True})
        return _parse_auth_response(response, endpoint=f"accounts:{method}")

    async def sign_in(self, email: str, password: str) -> User:
        self._user, self._token = await self._password_grant("signInWithPassword", email, password)
        _logger.debug("Signed in uid=%s", self._user.id)
        return self._user

    async def sign_up(self, email: str, password: str) -> User:
        self._user, self._token = await self._password_grant("signUp", email, password)
        _logger.debug("Signed up uid=%s", self._user.id)
        return self._user

    async def sign_out(self) -> None:
        self._user = None
        self._token = None

    async def id_token(self) -> str | None:
        """Current id token, refreshed through the secure token service when stale."""
        token = self._token
        if token is None:
            return None
        if not token.is_expired:
            return token.id_token
        url = f"{self._config.token_base_url}/token?key={self._config.api_key}"
        try:
            response = await self._transport.request_json(
                "POST",
                url,
                payload={"grant_type": "refresh_token", "refresh_token": token.refresh_token},
            )
        except FleetTransportError as exc:
            raise FleetAuthenticationError(f"Token refresh failed: {exc}", code=error_code(exc)) from exc
        _, self._token = _parse_auth_response(response, endpoint="token")
        return self._token.id_token

    async def reauthenticate(self, password: str) -> None:
        user = self._user
        if user is None or not user.email:
            raise FleetAuthenticationError("No signed-in user to reauthenticate")
        fresh_user, fresh_token = await self._password_grant("signInWithPassword", user.email, password)
        if fresh_user.id != user.id:
            raise FleetAuthenticationError("Reauthentication returned a different account")
        self._token = fresh_token
        _logger.debug("Reauthenticated uid=%s", user.id)

    async def delete_account(self) -> None:
        if self._user is None:
            raise FleetAuthenticationError("No signed-in user")
        id_token = await self.id_token()
        await self._call("delete", {"idToken": id_token})
        _logger.info("Deleted identity account uid=%s", self._user.id)
        self._user = None
        self._token = None
