from __future__ import annotations

from typing import Optional


class OwamailError(Exception):
    """Base class for every error raised by owamail."""


class ConfigError(OwamailError):
    pass


class AuthError(OwamailError):
    pass


class ExchangeError(OwamailError):
    """A WebDAV operation was rejected by the server."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotConnectedError(OwamailError, RuntimeError):
    def __init__(self, message: str = "Not connected."):
        super().__init__(message)


class TransportError(OwamailError):
    pass


class AddressError(TransportError):
    pass
