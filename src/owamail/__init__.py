from owamail.config import ConnectionSettings, StoreConfig, resolve_settings
from owamail.dav import CachedMessage, ExchangeConnection, create_connection, escape
from owamail.errors import (
    AddressError,
    AuthError,
    ConfigError,
    ExchangeError,
    NotConnectedError,
    OwamailError,
    TransportError,
)
from owamail.smtp import ExchangeTransport, partition_recipients
from owamail.store import ExchangeFolder, ExchangeMessage, ExchangeStore
from owamail.types import MailboxConnection, MessageRef

__all__ = [
    "StoreConfig",
    "ConnectionSettings",
    "resolve_settings",
    "ExchangeConnection",
    "create_connection",
    "CachedMessage",
    "escape",
    "ExchangeStore",
    "ExchangeFolder",
    "ExchangeMessage",
    "ExchangeTransport",
    "partition_recipients",
    "MailboxConnection",
    "MessageRef",
    "OwamailError",
    "ConfigError",
    "AuthError",
    "ExchangeError",
    "NotConnectedError",
    "TransportError",
    "AddressError",
]
