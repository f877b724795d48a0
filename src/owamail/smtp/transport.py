# owamail/smtp/transport.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from email.message import Message
from typing import Callable, Iterable, Optional

import requests

from owamail.config import StoreConfig, resolve_settings
from owamail.dav.connection import create_connection
from owamail.errors import NotConnectedError, TransportError
from owamail.log import get_logger
from owamail.smtp.recipients import (
    RECIPIENT_HEADERS,
    apply_recipients,
    header_addresses,
    partition_recipients,
)
from owamail.types import MailboxConnection

logger = logging.getLogger(__name__)


@dataclass
class ExchangeTransport:
    """
    SMTP-style sending through an Exchange mailbox.

        transport = ExchangeTransport(StoreConfig(host=..., username=..., password=..., mailbox=...))
        transport.connect()
        transport.send_message(msg, ["a@example.com"])
    """
    config: StoreConfig
    session_factory: Optional[Callable[[], requests.Session]] = None

    _connection: Optional[MailboxConnection] = field(default=None, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __enter__(self) -> "ExchangeTransport":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connection is not None and self._connection.connected

    def connect(self) -> None:
        settings = resolve_settings(self.config)
        if settings.debug:
            get_logger(debug=True)
        with self._lock:
            self._connection = None
            conn = create_connection(settings, session_factory=self.session_factory)
            conn.connect()
            self._connection = conn

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.disconnect()
                self._connection = None

    def send_message(self, message: Message, envelope: Optional[Iterable[object]] = None) -> None:
        """
        Send `message` to the envelope recipients. Without an envelope, every
        address in the To/Cc/Bcc headers is used.
        """
        if not isinstance(message, Message):
            raise TransportError("Invalid message; only RFC 822 MIME messages are supported.")
        if envelope is None:
            envelope = [a for h in RECIPIENT_HEADERS for a in header_addresses(message, h)]
        envelope = list(envelope)
        if not envelope:
            raise TransportError("No addresses specified.")

        apply_recipients(message, partition_recipients(message, envelope))

        with self._lock:
            if not self.connected:
                raise NotConnectedError()
            logger.debug("Sending message to %d recipient(s)", len(envelope))
            self._connection.send(message)
