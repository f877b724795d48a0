from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlsplit

import requests
from requests.auth import AuthBase, HTTPBasicAuth
from requests_ntlm import HttpNtlmAuth

from owamail.auth.base import AuthContext
from owamail.errors import ConfigError

SCHEMES = ("ntlm", "basic")

_DEFAULT_PORTS = {"http": 80, "https": 443}


class ScopedAuth(AuthBase):
    """
    Delegates to `inner` only for requests whose host and port match the scope,
    so credentials are never presented to a redirect target on another host.
    """

    def __init__(self, inner: AuthBase, ctx: AuthContext):
        self.inner = inner
        self.ctx = ctx

    def in_scope(self, url: str) -> bool:
        parts = urlsplit(url)
        port = parts.port or _DEFAULT_PORTS.get(parts.scheme.lower(), -1)
        return (parts.hostname or "").lower() == self.ctx.host.lower() and port == self.ctx.port

    def __call__(self, r):
        if not self.in_scope(r.url):
            return r
        return self.inner(r)


@dataclass(frozen=True)
class PasswordAuth:
    """
    Username/password credentials presented on the challenge probe.
    scheme="ntlm" uses NTLM (DOMAIN\\user style usernames), "basic" uses HTTP basic.
    """
    username: str
    password: str = field(repr=False)
    scheme: str = "ntlm"

    def __post_init__(self) -> None:
        if self.scheme not in SCHEMES:
            raise ConfigError(f"Unsupported auth scheme: {self.scheme!r}")

    def _inner(self) -> AuthBase:
        if self.scheme == "basic":
            return HTTPBasicAuth(self.username, self.password)
        return HttpNtlmAuth(self.username, self.password)

    def apply_session(self, session: requests.Session, ctx: AuthContext) -> None:
        session.auth = ScopedAuth(self._inner(), ctx)
