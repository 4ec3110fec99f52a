"""Errors raised by session components and answered with a targeted ``error`` message."""

from __future__ import annotations


class SessionError(Exception):
    """Base class for rejections that leave session state untouched."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProtocolError(SessionError):
    """Malformed payloads, unknown fields and out-of-range values."""


class AuthorizationError(SessionError):
    """A non-host participant attempted a host-only action."""


class SequencingError(SessionError):
    """The action is not valid in the current round or queue state."""
