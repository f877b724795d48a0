# owamail/dav/connection.py
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from email.message import Message
from typing import Callable, Iterator, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter

from owamail.auth import AuthContext, DAVAuth, PasswordAuth
from owamail.config import HTTP_PORT, HTTPS_PORT, ConnectionSettings
from owamail.dav import xml
from owamail.dav.cache import BUFFER_SIZE, CachedMessage
from owamail.dav.escape import escape
from owamail.dav.variants import EXCHANGE_2003, ExchangeVariant, get_variant
from owamail.errors import AuthError, ExchangeError, NotConnectedError, TransportError
from owamail.types import MailboxConnection, MessageRef

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
MESSAGE_CONTENT_TYPE = "message/rfc822"
SUBMISSION_URI = "##DavMailSubmissionURI##"

PROPFIND = "PROPFIND"
SEARCH = "SEARCH"
BDELETE = "BDELETE"
BPROPPATCH = "BPROPPATCH"

RefLike = Union[MessageRef, str]


class SourceAddressAdapter(HTTPAdapter):
    """Binds outgoing sockets to a local address (multi-homed hosts)."""

    def __init__(self, source_address: str, **kwargs):
        self.source_address = source_address
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs["source_address"] = (self.source_address, 0)
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


def _release(resp: requests.Response) -> None:
    """Drain whatever is left of the body and hand the connection back to the pool."""
    try:
        for _ in resp.iter_content(BUFFER_SIZE):
            pass
    except Exception:
        # best effort; must not mask the error that got us here
        pass
    finally:
        resp.close()


def _url_of(ref: RefLike) -> str:
    return ref if isinstance(ref, str) else ref.url


def _basename(ref: RefLike) -> str:
    return (MessageRef(ref) if isinstance(ref, str) else ref).basename


def _seconds(ms: int) -> Optional[float]:
    return ms / 1000.0 if ms and ms > 0 else None


@dataclass
class ExchangeConnection:
    """
    One authenticated WebDAV session against a single Exchange mailbox.

    Every public operation holds the connection lock for its whole duration,
    network I/O included, so a connection serves one request at a time.
    Use separate connections for parallel work.
    """
    settings: ConnectionSettings
    variant: ExchangeVariant = EXCHANGE_2003
    session_factory: Callable[[], requests.Session] = requests.Session
    auth: Optional[DAVAuth] = None

    inbox_url: Optional[str] = field(default=None, init=False)

    _session: Optional[requests.Session] = field(default=None, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __enter__(self) -> "ExchangeConnection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
        return False

    @property
    def connected(self) -> bool:
        return self.inbox_url is not None

    # -----------------------
    # HTTP plumbing
    # -----------------------

    def _client(self) -> requests.Session:
        with self._lock:
            if self._session is None:
                session = self.session_factory()
                if self.settings.local_address:
                    adapter = SourceAddressAdapter(self.settings.local_address)
                    session.mount("http://", adapter)
                    session.mount("https://", adapter)
                self._session = session
            return self._session

    def _timeout(self) -> Tuple[Optional[float], Optional[float]]:
        return (_seconds(self.settings.connect_timeout), _seconds(self.settings.timeout))

    @contextmanager
    def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        data=None,
    ) -> Iterator[requests.Response]:
        """
        Send one request with a streamed body. The response is always drained
        and closed on exit, whether or not the caller read it.
        """
        session = self._client()
        prepared = session.prepare_request(
            requests.Request(method, url, headers=dict(headers or {}), data=data)
        )
        # requests would re-quote the target; keep it byte for byte
        prepared.url = url
        send_kwargs = session.merge_environment_settings(prepared.url, {}, True, None, None)

        logger.debug("%s %s", method, url)
        resp = session.send(prepared, timeout=self._timeout(), **send_kwargs)
        try:
            logger.debug("%s %s -> %d", method, url, resp.status_code)
            yield resp
        finally:
            _release(resp)

    def _require_connected(self) -> str:
        if self.inbox_url is None:
            raise NotConnectedError()
        return self.inbox_url

    def _collection_url(self) -> str:
        inbox = self._require_connected()
        return inbox if inbox.endswith("/") else inbox + "/"

    # -----------------------
    # Sign-on
    # -----------------------

    def _auth_context(self) -> AuthContext:
        parts = urlsplit(self.settings.server)
        default_port = HTTPS_PORT if parts.scheme == "https" else HTTP_PORT
        return AuthContext(host=parts.hostname or "", port=parts.port or default_port)

    def _credentials(self) -> DAVAuth:
        if self.auth is not None:
            return self.auth
        return PasswordAuth(self.settings.username, self.settings.password, scheme=self.settings.auth_scheme)

    def connect(self) -> None:
        """
        Sign on and resolve the inbox. On any failure the connection is left
        disconnected and the error propagates.
        """
        with self._lock:
            self.inbox_url = None
            try:
                self._sign_on()
                self.find_inbox()
            except Exception:
                self.inbox_url = None
                raise

    def _sign_on(self) -> None:
        server = self.settings.server
        session = self._client()
        self._credentials().apply_session(session, self._auth_context())

        with self._request("OPTIONS", server + self.variant.probe_path) as resp:
            authenticated = resp.status_code < 400

        if authenticated:
            logger.debug("Authenticated by challenge against %s", server)
            return

        logger.debug("Challenge probe refused; trying forms sign-on at %s", self.variant.sign_on_path)
        form = {
            "destination": server + self.variant.probe_path,
            "flags": "0",
            "username": self.settings.username,
            "password": self.settings.password,
        }
        with self._request(
            "POST",
            server + self.variant.sign_on_path,
            headers={"Content-Type": FORM_CONTENT_TYPE},
            data=form,
        ) as resp:
            if resp.status_code >= 400:
                raise AuthError(f"Sign-on failed: {resp.status_code}")

    def disconnect(self) -> None:
        with self._lock:
            self.inbox_url = None
            if self._session is not None:
                self._session.close()
                self._session = None

    # -----------------------
    # Mailbox resolution
    # -----------------------

    def find_inbox(self) -> str:
        with self._lock:
            self.inbox_url = None
            url = f"{self.settings.server}/exchange/{self.settings.mailbox}"
            headers = {"Content-Type": xml.XML_CONTENT_TYPE, "Depth": "0", "Brief": "t"}
            with self._request(PROPFIND, url, headers=headers, data=xml.find_inbox_body()) as resp:
                if resp.status_code >= 300:
                    raise ExchangeError("Unable to obtain inbox.", status=resp.status_code)
                inbox = xml.first_inbox(resp.iter_content(BUFFER_SIZE))
            if inbox is None:
                raise ExchangeError("Unable to obtain inbox.")
            logger.debug("Inbox for %s is %s", self.settings.mailbox, inbox)
            self.inbox_url = inbox
            return inbox

    # -----------------------
    # Listing
    # -----------------------

    def list_messages(self, include_read: bool, limit: int = -1) -> Tuple[str, ...]:
        """
        Message URLs in server order. limit <= 0 means no row cap.
        """
        with self._lock:
            inbox = self._require_connected()
            headers = {"Content-Type": xml.XML_CONTENT_TYPE}
            if limit is not None and limit > 0:
                headers["Range"] = f"rows=0-{limit}"
            headers["Brief"] = "t"
            with self._request(SEARCH, inbox, headers=headers, data=xml.search_body(include_read)) as resp:
                if resp.status_code >= 300:
                    raise ExchangeError("Unable to list messages.", status=resp.status_code)
                return tuple(xml.iter_hrefs(resp.iter_content(BUFFER_SIZE)))

    # -----------------------
    # Batch mutation
    # -----------------------

    def _batch(self, method: str, build: Callable[[Sequence[str]], bytes], refs: Sequence[RefLike], failure: str) -> None:
        with self._lock:
            url = self._collection_url()
            body = build([_basename(r) for r in refs])
            headers = {"Content-Type": xml.XML_CONTENT_TYPE, "If-Match": "*", "Brief": "t"}
            with self._request(method, url, headers=headers, data=body) as resp:
                if resp.status_code >= 300:
                    raise ExchangeError(failure, status=resp.status_code)

    def delete(self, refs: Sequence[RefLike]) -> None:
        self._batch(BDELETE, xml.delete_body, refs, "Unable to delete messages.")

    def mark_read(self, refs: Sequence[RefLike]) -> None:
        self._batch(BPROPPATCH, xml.mark_read_body, refs, "Unable to mark messages read.")

    # -----------------------
    # Fetch / send
    # -----------------------

    def fetch(self, ref: RefLike) -> CachedMessage:
        with self._lock:
            self._require_connected()
            folder = None if isinstance(ref, str) else ref.folder
            with self._request("GET", escape(_url_of(ref)), headers={"Translate": "F"}) as resp:
                if resp.status_code >= 300:
                    raise ExchangeError(f"Unable to fetch message: {resp.status_code}", status=resp.status_code)
                return CachedMessage.from_chunks(resp.iter_content(BUFFER_SIZE), folder=folder)

    def send(self, message: Message) -> None:
        """Submit an RFC 822 message through the mailbox's submission URI."""
        with self._lock:
            self._require_connected()
            url = escape(f"{self.settings.server}/exchange/{self.settings.mailbox}/{SUBMISSION_URI}/")
            headers = {"Content-Type": MESSAGE_CONTENT_TYPE, "Translate": "f", "Saveinsent": "t"}
            with self._request("PUT", url, headers=headers, data=message.as_bytes()) as resp:
                if resp.status_code >= 300:
                    raise TransportError(f"Unable to send message: {resp.status_code}")


def create_connection(
    settings: ConnectionSettings,
    *,
    session_factory: Optional[Callable[[], requests.Session]] = None,
    auth: Optional[DAVAuth] = None,
) -> MailboxConnection:
    """Build the connection for the Exchange version named in settings.version."""
    return ExchangeConnection(
        settings,
        variant=get_variant(settings.version),
        session_factory=session_factory or requests.Session,
        auth=auth,
    )
