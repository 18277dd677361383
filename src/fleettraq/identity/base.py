"""Identity provider seam."""

from __future__ import annotations

from typing import Protocol

from fleettraq.models.user import User


class IdentityProvider(Protocol):
    """Session-based authentication used by the coordinators.

    ``delete_account`` raises
    :class:`~fleettraq.exceptions.FleetReauthenticationRequiredError` when
    the login is too old, and
    :class:`~fleettraq.exceptions.FleetAccountGoneError` when the account
    no longer exists.
    """

    @property
    def current_user(self) -> User | None: ...

    async def sign_in(self, email: str, password: str) -> User: ...

    async def sign_up(self, email: str, password: str) -> User: ...

    async def sign_out(self) -> None: ...

    async def id_token(self) -> str | None: ...

    async def reauthenticate(self, password: str) -> None: ...

    async def delete_account(self) -> None: ...
