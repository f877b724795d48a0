# owamail/dav/escape.py
from __future__ import annotations

import string

HEXABET = "0123456789ABCDEF"

ALLOWED = frozenset(string.ascii_letters + string.digits + "-_.!~*'()%:@&=+$,;/")


def _hex_byte(value: int) -> str:
    return "%" + HEXABET[(value >> 4) & 0x0F] + HEXABET[value & 0x0F]


def escape(url: str) -> str:
    """
    Percent-encode a message URL for use as a request target.

    Works on UTF-16 code units, not UTF-8: a unit outside the allow-list
    becomes %XX of its low byte, preceded by %YY of its high byte when that
    byte is nonzero. Exchange expects exactly this form, e.g. "€" -> "%20%AC".
    """
    raw = url.encode("utf-16-be", "surrogatepass")
    out = []
    for i in range(0, len(raw), 2):
        unit = (raw[i] << 8) | raw[i + 1]
        if unit < 128 and chr(unit) in ALLOWED:
            out.append(chr(unit))
            continue
        high = unit >> 8
        if high:
            out.append(_hex_byte(high))
        out.append(_hex_byte(unit & 0xFF))
    return "".join(out)
