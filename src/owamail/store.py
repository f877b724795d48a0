# owamail/store.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests

from owamail.config import ConnectionSettings, StoreConfig, resolve_settings
from owamail.dav.cache import CachedMessage
from owamail.dav.connection import create_connection
from owamail.errors import NotConnectedError
from owamail.log import get_logger
from owamail.types import MailboxConnection, MessageRef

logger = logging.getLogger(__name__)

INBOX = "INBOX"


@dataclass
class ExchangeMessage:
    number: int
    ref: MessageRef
    read: bool = False
    deleted: bool = False

    _content: Optional[CachedMessage] = field(default=None, init=False, repr=False)

    @property
    def folder(self) -> "ExchangeFolder":
        return self.ref.folder

    def content(self) -> CachedMessage:
        """Raw message bytes; fetched on first use and cached afterwards."""
        if self._content is None:
            self._content = self.folder.fetch(self)
        return self._content

    def set_read(self, value: bool = True) -> None:
        self.read = value

    def set_deleted(self, value: bool = True) -> None:
        self.deleted = value


@dataclass
class ExchangeFolder:
    """
    The inbox seen as a POP3-style maildrop: messages numbered from 1,
    deletions applied when the folder is closed with expunge.
    """
    store: "ExchangeStore"
    name: str = INBOX

    _messages: Optional[List[ExchangeMessage]] = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self._messages is not None

    def open(self) -> "ExchangeFolder":
        settings = self.store.settings
        urls = self.store.connection.list_messages(settings.unfiltered, settings.limit)
        self._messages = [
            ExchangeMessage(number=i, ref=MessageRef(url, folder=self))
            for i, url in enumerate(urls, start=1)
        ]
        logger.debug("Opened %s with %d message(s)", self.name, len(self._messages))
        return self

    def _require_open(self) -> List[ExchangeMessage]:
        if self._messages is None:
            raise NotConnectedError(f"Folder {self.name!r} is not open.")
        return self._messages

    @property
    def messages(self) -> List[ExchangeMessage]:
        return list(self._require_open())

    @property
    def message_count(self) -> int:
        return len(self._require_open())

    def get_message(self, number: int) -> ExchangeMessage:
        messages = self._require_open()
        if number < 1 or number > len(messages):
            raise IndexError(f"No message {number} in {self.name!r}")
        return messages[number - 1]

    def fetch(self, message: ExchangeMessage) -> CachedMessage:
        return self.store.connection.fetch(message.ref)

    def close(self, expunge: bool = True) -> None:
        """
        Push pending changes: deleted messages are removed (or only marked
        read, depending on the store's delete option), read ones marked read.
        """
        messages = self._require_open()
        conn = self.store.connection

        deleted = [m.ref for m in messages if m.deleted] if expunge else []
        if deleted:
            if self.store.settings.delete:
                conn.delete(deleted)
            else:
                conn.mark_read(deleted)

        read = [m.ref for m in messages if m.read and not (expunge and m.deleted)]
        if read:
            conn.mark_read(read)

        self._messages = None

    def __enter__(self) -> "ExchangeFolder":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.close()
        else:
            self._messages = None
        return False


@dataclass
class ExchangeStore:
    config: StoreConfig
    session_factory: Optional[Callable[[], requests.Session]] = None

    settings: Optional[ConnectionSettings] = field(default=None, init=False)

    _connection: Optional[MailboxConnection] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __enter__(self) -> "ExchangeStore":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def connect(self) -> None:
        settings = resolve_settings(self.config)
        if settings.debug:
            get_logger(debug=True)

        with self._lock:
            self._connection = None
            conn = create_connection(settings, session_factory=self.session_factory)
            try:
                conn.connect()
            except Exception:
                logger.debug("Connection to %s failed", settings.server, exc_info=True)
                raise
            self.settings = settings
            self._connection = conn

    @property
    def connected(self) -> bool:
        return self._connection is not None and self._connection.connected

    @property
    def connection(self) -> MailboxConnection:
        conn = self._connection
        if conn is None or not conn.connected:
            raise NotConnectedError()
        return conn

    def get_folder(self, name: str = INBOX) -> ExchangeFolder:
        if not self.connected:
            raise NotConnectedError()
        return ExchangeFolder(self, name)

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.disconnect()
                self._connection = None
