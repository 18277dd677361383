"""Custom exception hierarchy for fleettraq."""

from __future__ import annotations


class FleetError(Exception):
    """Base exception for all fleettraq errors."""


class FleetConfigError(FleetError):
    """Invalid or missing configuration."""


class FleetValidationError(FleetError):
    """User input rejected before any write was issued."""


class FleetPreconditionError(FleetError):
    """Operation guard failed (another controller, missing session, ...)."""


class FleetTransportError(FleetError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
        payload: dict[str, object] | None = None,
    ) -> None:
        self.status_code = status_code
        self.url = url
        self.payload = payload or {}
        super().__init__(message)


class FleetStoreError(FleetError):
    """A record store create/update/delete/subscribe call failed."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        collection: str = "",
        status_code: int | None = None,
    ) -> None:
        self.operation = operation
        self.collection = collection
        self.status_code = status_code
        super().__init__(message)


class FleetIdentityError(FleetError):
    """Identity provider rejected the request."""

    def __init__(self, message: str, *, code: str = "") -> None:
        self.code = code
        super().__init__(message)


class FleetAuthenticationError(FleetIdentityError):
    """No signed-in user, or sign-in failed."""


class FleetReauthenticationRequiredError(FleetIdentityError):
    """A sensitive operation needs a fresh credential.

    Raised by :meth:`IdentityProvider.delete_account` when the provider
    reports the login as too old (Firebase ``CREDENTIAL_TOO_OLD_LOGIN_AGAIN``).
    The caller is expected to collect the password and call
    ``reauthenticate`` before retrying.
    """


class FleetAccountGoneError(FleetIdentityError):
    """The identity account no longer exists (``USER_NOT_FOUND``)."""


class FleetGeolocationError(FleetError):
    """Position acquisition failed.

    ``code`` follows the W3C geolocation codes: 1 permission denied,
    2 position unavailable, 3 timeout.
    """

    def __init__(self, message: str, *, code: int = 2) -> None:
        self.code = code
        super().__init__(message)
