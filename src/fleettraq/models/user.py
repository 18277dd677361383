"""Identity provider models."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    """The signed-in account."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    email: str | None = None


class AuthToken(BaseModel):
    """Tokens returned by a successful sign-in or refresh.

    ``issued_at`` is a ``time.monotonic()`` reading, like the rest of the
    library's expiry bookkeeping.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id_token: str
    refresh_token: str
    expires_in: float = 3600.0
    issued_at: float = Field(default_factory=time.monotonic)

    @property
    def is_expired(self) -> bool:
        # Refresh a minute early.
        return (time.monotonic() - self.issued_at) >= max(self.expires_in - 60.0, 0.0)
