"""Error taxonomy shared by the domain and HTTP layers."""

from __future__ import annotations

from typing import Any


class BackofficeError(Exception):
    """Base class for failures that map onto a client-facing HTTP status."""

    status_code: int = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class Unauthenticated(BackofficeError):
    """Missing or invalid credential; the two cases are indistinguishable."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class InvalidCredentials(BackofficeError):
    status_code = 401

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class ValidationFailed(BackofficeError):
    status_code = 400


class ResourceNotFound(BackofficeError):
    """Resource is absent, soft deleted, or lost a conditional-update race."""

    status_code = 404


class TransitionNotAllowed(ResourceNotFound):
    """Resource exists but its current status does not admit the action.

    Reported as 404 for parity with the rest of the admin API. ``Conflict``
    is reserved for the day the two cases get separate status codes.
    """

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class Conflict(BackofficeError):
    status_code = 409


class RateLimited(BackofficeError):
    status_code = 429

    def __init__(self, message: str = "rate limited") -> None:
        super().__init__(message)


class Internal(BackofficeError):
    status_code = 500


class PersistenceError(Exception):
    """Raised by repositories when the backing store fails."""
