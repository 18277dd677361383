"""In-process identity provider for local mode and tests."""

from __future__ import annotations

import secrets
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from fleettraq.exceptions import (
    FleetAccountGoneError,
    FleetAuthenticationError,
    FleetIdentityError,
    FleetReauthenticationRequiredError,
)
from fleettraq.models.user import User


@dataclass
class _Account:
    user: User
    password: str


class InMemoryIdentityProvider:
    """Email/password accounts held in memory.

    Parameters
    ----------
    recent_login_window : float or None
        Seconds after sign-in (or reauthentication) during which
        ``delete_account`` is allowed. Older logins raise
        :class:`FleetReauthenticationRequiredError`. ``None`` disables the
        check.
    clock : callable
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        *,
        recent_login_window: float | None = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._accounts: dict[str, _Account] = {}
        self._user: User | None = None
        self._token: str | None = None
        self._logged_in_at: float | None = None
        self._recent_login_window = recent_login_window
        self._clock = clock

    @property
    def current_user(self) -> User | None:
        return self._user

    def new_device(self) -> InMemoryIdentityProvider:
        """Another client of the same account directory (signed out)."""
        provider = InMemoryIdentityProvider(recent_login_window=self._recent_login_window, clock=self._clock)
        provider._accounts = self._accounts
        return provider

    def _start_session(self, user: User) -> User:
        self._user = user
        self._token = secrets.token_urlsafe(24)
        self._logged_in_at = self._clock()
        return user

    async def sign_up(self, email: str, password: str) -> User:
        key = email.strip().lower()
        if key in self._accounts:
            raise FleetIdentityError("Email already in use", code="EMAIL_EXISTS")
        if len(password) < 6:
            raise FleetIdentityError("Password should be at least 6 characters", code="WEAK_PASSWORD")
        user = User(id=uuid.uuid4().hex, email=email.strip())
        self._accounts[key] = _Account(user=user, password=password)
        return self._start_session(user)

    async def sign_in(self, email: str, password: str) -> User:
        account = self._accounts.get(email.strip().lower())
        if account is None or account.password != password:
            raise FleetAuthenticationError("Invalid email or password", code="INVALID_LOGIN_CREDENTIALS")
        return self._start_session(account.user)

    async def sign_out(self) -> None:
        self._user = None
        self._token = None
        self._logged_in_at = None

    async def id_token(self) -> str | None:
        return self._token

    async def reauthenticate(self, password: str) -> None:
        user = self._user
        if user is None or not user.email:
            raise FleetAuthenticationError("No signed-in user to reauthenticate")
        account = self._accounts.get(user.email.lower())
        if account is None:
            raise FleetAccountGoneError("Account no longer exists", code="USER_NOT_FOUND")
        if account.password != password:
            raise FleetAuthenticationError("Invalid password", code="INVALID_PASSWORD")
        self._logged_in_at = self._clock()

    def expire_login(self) -> None:
        """Make the current login count as stale for sensitive operations."""
        self._logged_in_at = float("-inf")

    async def delete_account(self) -> None:
        user = self._user
        if user is None:
            raise FleetAuthenticationError("No signed-in user")
        key = (user.email or "").lower()
        if key not in self._accounts:
            raise FleetAccountGoneError("Account no longer exists", code="USER_NOT_FOUND")
        if self._recent_login_window is not None and (
            self._logged_in_at is None or self._clock() - self._logged_in_at > self._recent_login_window
        ):
            raise FleetReauthenticationRequiredError(
                "Deleting the account requires a recent login",
                code="CREDENTIAL_TOO_OLD_LOGIN_AGAIN",
            )
        del self._accounts[key]
        await self.sign_out()
