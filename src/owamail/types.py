from __future__ import annotations

from dataclasses import dataclass, field
from email.message import Message
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence, Tuple

if TYPE_CHECKING:
    from owamail.dav.cache import CachedMessage


@dataclass(frozen=True)
class MessageRef:
    """
    Handle for one message in the inbox collection.
    `url` is the resource URL exactly as returned by SEARCH.
    """
    url: str
    folder: Optional[Any] = field(default=None, compare=False, repr=False)

    @property
    def basename(self) -> str:
        return self.url[self.url.rfind("/") + 1:]


class MailboxConnection(Protocol):
    @property
    def connected(self) -> bool: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def list_messages(self, include_read: bool, limit: int = -1) -> Tuple[str, ...]: ...

    def delete(self, refs: Sequence[MessageRef]) -> None: ...

    def mark_read(self, refs: Sequence[MessageRef]) -> None: ...

    def fetch(self, ref: MessageRef) -> "CachedMessage": ...

    def send(self, message: Message) -> None: ...
