# owamail/config.py
from __future__ import annotations

import logging
import os
import re
import socket
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from owamail.errors import ConfigError
from owamail.log import mask_password

logger = logging.getLogger(__name__)

HTTP_PORT = 80
HTTPS_PORT = 443

ENV_PREFIX = "OWAMAIL_"

_OPTION_SPLIT = re.compile(r"[,;]")


def _parse_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _parse_int(value: str, what: str) -> int:
    try:
        return int(value.strip())
    except (AttributeError, ValueError):
        raise ConfigError(f"Invalid {what} specified: {value}") from None


@dataclass(frozen=True)
class StoreConfig:
    """
    Everything needed to open a mailbox connection.

    port/limit/timeouts use -1 for "not set". Timeouts are in milliseconds;
    a value <= 0 means no timeout.
    """
    host: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    port: int = -1
    mailbox: Optional[str] = None

    unfiltered: bool = False   # True: list all messages, False: unread only
    delete: bool = False       # True: hard delete, False: mark read on delete
    limit: int = -1

    secure: bool = False
    timeout: int = -1
    connect_timeout: int = -1
    local_address: Optional[str] = None

    debug: bool = False
    debug_password: bool = False

    version: str = "2003"
    auth_scheme: str = "ntlm"

    @classmethod
    def from_options(cls, options: Mapping[str, str], **overrides) -> "StoreConfig":
        """
        Build a config from string options, e.g. parsed from a properties or
        .env file. Keyword overrides win over options.
        """
        kw: Dict[str, object] = {}

        for name, attr in (
            ("host", "host"),
            ("username", "username"),
            ("password", "password"),
            ("mailbox", "mailbox"),
            ("localaddress", "local_address"),
            ("version", "version"),
            ("auth", "auth_scheme"),
        ):
            if options.get(name) is not None:
                kw[attr] = options[name]

        for name, attr in (
            ("unfiltered", "unfiltered"),
            ("delete", "delete"),
            ("ssl", "secure"),
            ("debug", "debug"),
            ("debug.password", "debug_password"),
        ):
            if options.get(name) is not None:
                kw[attr] = _parse_bool(options[name])

        for name, attr, what in (
            ("port", "port", "port"),
            ("limit", "limit", "limit"),
            ("timeout", "timeout", "timeout value"),
            ("connectiontimeout", "connect_timeout", "connection timeout value"),
        ):
            if options.get(name) is not None:
                kw[attr] = _parse_int(options[name], what)

        kw.update(overrides)
        return cls(**kw)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, environ: Optional[Mapping[str, str]] = None) -> "StoreConfig":
        """
        Read OWAMAIL_* variables: OWAMAIL_HOST, OWAMAIL_MAILBOX, OWAMAIL_DEBUG_PASSWORD, ...
        Call dotenv.load_dotenv() first to pick up a .env file.
        """
        env = os.environ if environ is None else environ
        options: Dict[str, str] = {}
        for key, value in env.items():
            if not key.startswith(prefix):
                continue
            name = key[len(prefix):].lower().replace("_", ".")
            options[name] = value
        return cls.from_options(options)


@dataclass(frozen=True)
class ConnectionSettings:
    server: str
    mailbox: str
    username: str
    password: str = field(repr=False)
    timeout: int = -1
    connect_timeout: int = -1
    local_address: Optional[str] = None
    unfiltered: bool = False
    delete: bool = False
    limit: int = -1
    version: str = "2003"
    auth_scheme: str = "ntlm"
    debug: bool = False
    debug_password: bool = False


def _split_server(host: str, port: int, secure: bool, debug: bool) -> Tuple[str, int, bool]:
    parts = urlsplit(host)
    if parts.scheme.lower() in ("http", "https") and parts.hostname:
        secure = parts.scheme.lower() == "https"
        try:
            url_port = parts.port
        except ValueError:
            raise ConfigError(f"Invalid port in host URL: {host}") from None
        if url_port is not None:
            port = url_port
        host = parts.hostname
    elif debug:
        logger.debug("Not parsing %s as a URL; using explicit options for secure, host, and port.", host)
    return host, port, secure


def parse_mailbox_options(options: str) -> Dict[str, str]:
    """`unfiltered=true;limit=10` -> {"unfiltered": "true", "limit": "10"}"""
    props: Dict[str, str] = {}
    for pair in _OPTION_SPLIT.split(options):
        pair = pair.strip()
        if not pair:
            continue
        m = re.match(r"([^=:\s]+)\s*[=:\s]\s*(.*)$", pair)
        if m is None:
            props[pair] = ""
        else:
            props[m.group(1)] = m.group(2).strip()
    return props


def _split_username(username: str) -> Tuple[str, Optional[str], Optional[str]]:
    """user:mailbox[opts] -> (user, mailbox, opts)"""
    index = username.find(":")
    if index == -1:
        return username, None, None
    user, mailbox = username[:index], username[index + 1:]
    index = mailbox.find("[")
    if index == -1:
        return user, mailbox, None
    end = mailbox.find("]", index)
    if end == -1:
        raise ConfigError(f"Unable to parse mailbox options: missing ']' in {mailbox!r}")
    return user, mailbox[:index], mailbox[index + 1:end]


def _resolve_local_address(address: str) -> str:
    try:
        return socket.gethostbyname(address)
    except (OSError, UnicodeError):
        raise ConfigError(f"Invalid local address specified: {address}") from None


def resolve_settings(config: StoreConfig) -> ConnectionSettings:
    """
    Validate `config` and derive the server URL, mailbox and per-connection
    options. Raises ConfigError without touching the network.
    """
    debug = config.debug
    pwd = mask_password(config.password, reveal=config.debug_password)

    if not config.host or config.username is None or config.password is None:
        raise ConfigError(
            f'Missing parameter; host="{config.host}",username="{config.username}",password="{pwd}"'
        )

    host, port, secure = _split_server(config.host, config.port, config.secure, debug)
    if port == -1:
        port = HTTPS_PORT if secure else HTTP_PORT

    server = ("https://" if secure else "http://") + host
    if port != (HTTPS_PORT if secure else HTTP_PORT):
        server += f":{port}"

    cfg = config
    username, mailbox, mailbox_options = _split_username(config.username)
    if mailbox is not None:
        cfg = replace(cfg, mailbox=mailbox)
        if mailbox_options is not None:
            props = parse_mailbox_options(mailbox_options)
            if "unfiltered" in props:
                cfg = replace(cfg, unfiltered=_parse_bool(props["unfiltered"]))
            if "delete" in props:
                cfg = replace(cfg, delete=_parse_bool(props["delete"]))
            if "limit" in props:
                cfg = replace(cfg, limit=_parse_int(props["limit"], "limit"))
        elif debug:
            logger.debug("No mailbox options specified; using explicit limit, unfiltered, and delete.")
    elif debug:
        logger.debug("No mailbox specified in username; using explicit mailbox, limit, unfiltered, and delete.")

    local_address = None
    if cfg.local_address is not None:
        local_address = _resolve_local_address(cfg.local_address)

    if not cfg.mailbox:
        raise ConfigError("No mailbox specified.")

    settings = ConnectionSettings(
        server=server,
        mailbox=cfg.mailbox,
        username=username,
        password=config.password,
        timeout=cfg.timeout,
        connect_timeout=cfg.connect_timeout,
        local_address=local_address,
        unfiltered=cfg.unfiltered,
        delete=cfg.delete,
        limit=cfg.limit,
        version=cfg.version,
        auth_scheme=cfg.auth_scheme,
        debug=cfg.debug,
        debug_password=cfg.debug_password,
    )

    if debug:
        logger.debug("Server:\t%s", server)
        logger.debug("Username:\t%s", username)
        logger.debug("Password:\t%s", pwd)
        logger.debug("Mailbox:\t%s", settings.mailbox)
        logger.debug(
            "Options:\t%s%s%s",
            f"Message Limit = {settings.limit}" if settings.limit > 0 else "Unlimited Messages",
            "; Unfiltered" if settings.unfiltered else "; Filtered to Unread",
            "; Delete Messages on Delete" if settings.delete else "; Mark as Read on Delete",
        )
        if settings.timeout > 0:
            logger.debug("Read timeout:\t%d ms", settings.timeout)
        if settings.connect_timeout > 0:
            logger.debug("Connection timeout:\t%d ms", settings.connect_timeout)

    return settings
