# owamail/dav/cache.py
from __future__ import annotations

import os
import tempfile
import weakref
from email.message import EmailMessage as PyEmailMessage
from email.parser import BytesParser
from email.policy import default as default_policy
from typing import Any, BinaryIO, Iterable, Optional

BUFFER_SIZE = 65536
TEMP_PREFIX = "exmail"


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class CachedMessage:
    """
    Raw bytes of one fetched message, held in a local temporary file.

    Each open() returns an independent reader, so the content can be re-read
    without another round trip. The file is removed by discard(), when the
    object is garbage collected, or at interpreter exit.
    """

    def __init__(self, path: str, folder: Optional[Any] = None):
        self.path = path
        self.folder = folder
        self._finalizer = weakref.finalize(self, _unlink_quietly, path)

    @classmethod
    def from_chunks(cls, chunks: Iterable[bytes], folder: Optional[Any] = None) -> "CachedMessage":
        fd, path = tempfile.mkstemp(prefix=TEMP_PREFIX)
        try:
            with os.fdopen(fd, "wb", buffering=BUFFER_SIZE) as out:
                for chunk in chunks:
                    if chunk:
                        out.write(chunk)
        except BaseException:
            _unlink_quietly(path)
            raise
        return cls(path, folder)

    @property
    def size(self) -> int:
        return os.path.getsize(self.path)

    @property
    def discarded(self) -> bool:
        return not self._finalizer.alive

    def open(self) -> BinaryIO:
        if self.discarded:
            raise ValueError("cached message has been discarded")
        return open(self.path, "rb")

    def read_bytes(self) -> bytes:
        with self.open() as fh:
            return fh.read()

    def as_email(self) -> PyEmailMessage:
        with self.open() as fh:
            return BytesParser(policy=default_policy).parse(fh)

    def discard(self) -> None:
        self._finalizer()

    def __repr__(self) -> str:
        return f"CachedMessage(path={self.path!r}, discarded={self.discarded})"
