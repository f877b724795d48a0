from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import requests


@dataclass(frozen=True)
class AuthContext:
    host: str
    port: int


class DAVAuth(Protocol):
    def apply_session(self, session: requests.Session, ctx: AuthContext) -> None:
        """Attach credentials to `session` for requests sent to ctx.host:ctx.port."""
        ...
