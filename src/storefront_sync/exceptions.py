"""Error taxonomy for the sync core.

The API client and the identity resolver raise these; the coordinator and
the auth service catch them and turn them into state transitions or result
objects, so none of them escape to the caller.
"""

from __future__ import annotations


class StorefrontSyncError(Exception):
    """Base class for all errors raised inside the sync core."""


class StorefrontAPIError(StorefrontSyncError):
    """The remote API rejected a request or could not be reached.

    ``status_code`` is ``None`` for transport-level failures (DNS, refused
    connection, timeout) where no HTTP response was received.
    """

    def __init__(self, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


class AuthenticationFailedError(StorefrontAPIError):
    """The server refused the bearer token (HTTP 401)."""


class OrderConflictError(StorefrontAPIError):
    """An order mutation lost a race, e.g. the order was already accepted."""


class IdentityResolutionError(StorefrontSyncError):
    """No usable tenant identifier could be resolved for an operation."""
