# owamail/dav/variants.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from owamail.errors import ConfigError


@dataclass(frozen=True)
class ExchangeVariant:
    """Server-version specific paths; everything else is shared."""
    name: str
    probe_path: str
    sign_on_path: str


EXCHANGE_2003 = ExchangeVariant(
    name="2003",
    probe_path="/exchange",
    sign_on_path="/exchweb/bin/auth/owaauth.dll",
)

EXCHANGE_2007 = ExchangeVariant(
    name="2007",
    probe_path="/exchange",
    sign_on_path="/owa/auth/owaauth.dll",
)

VARIANTS: Dict[str, ExchangeVariant] = {v.name: v for v in (EXCHANGE_2003, EXCHANGE_2007)}


def get_variant(version: str) -> ExchangeVariant:
    try:
        return VARIANTS[str(version).strip()]
    except KeyError:
        raise ConfigError(
            f"Unsupported Exchange version {version!r} (expected one of {sorted(VARIANTS)})"
        ) from None
