"""Custom exception hierarchy for pyrtdb."""

from __future__ import annotations


class RtdbError(Exception):
    """Base exception for all pyrtdb errors."""


class RtdbConfigError(RtdbError):
    """Invalid or missing configuration."""


class RtdbTransportError(RtdbError):
    """Store-level failure (network, non-2xx, invalid JSON, broker refusal)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str = "",
    ) -> None:
        self.status_code = status_code
        self.path = path
        super().__init__(message)


class RtdbPermissionError(RtdbTransportError):
    """The store rejected the request for the current credentials.

    Raised for HTTP ``401``/``403`` replies, for a ``cancel`` event on a
    streaming subscription, and when an admin-only operation is attempted
    with a non-admin session.
    """


class RtdbAuthenticationError(RtdbPermissionError):
    """No usable session (signed out, expired, or revoked by the server)."""


class DocumentInputError(RtdbError, ValueError):
    """Malformed user input (invalid JSON text, missing key, wrong node kind).

    Raised before anything is sent to the store; the intent is dropped.
    """


class DeviceCommandError(RtdbError, ValueError):
    """Device-control request failed validation (unknown robot, bad angle...)."""
