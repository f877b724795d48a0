# owamail/smtp/recipients.py
from __future__ import annotations

from dataclasses import dataclass
from email.errors import HeaderParseError
from email.headerregistry import Address
from email.message import Message
from email.utils import getaddresses
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from owamail.errors import AddressError

SupportedAddress = Union[str, Address]

RECIPIENT_HEADERS = ("To", "Cc", "Bcc")


@dataclass(frozen=True)
class RecipientSets:
    """Corrected recipient headers; None means the header is dropped."""
    to: Optional[Tuple[Address, ...]] = None
    cc: Optional[Tuple[Address, ...]] = None
    bcc: Optional[Tuple[Address, ...]] = None

    def as_headers(self) -> Tuple[Tuple[str, Optional[Tuple[Address, ...]]], ...]:
        return (("To", self.to), ("Cc", self.cc), ("Bcc", self.bcc))


def _key(addr: Address) -> str:
    return addr.addr_spec.lower()


def _make(display_name: str, addr_spec: str) -> Address:
    try:
        return Address(display_name=display_name, addr_spec=addr_spec)
    except (ValueError, IndexError, HeaderParseError) as e:
        raise AddressError(f"Invalid address: {addr_spec!r}") from e


def coerce_address(addr: object) -> Address:
    """Accept an Address or an RFC 5322 string; anything else is rejected."""
    if isinstance(addr, Address):
        return addr
    if isinstance(addr, str):
        # one entry, one mailbox; "a@x, b@x" must not shrink to a@x
        found = [(name, spec) for name, spec in getaddresses([addr]) if spec]
        if len(found) == 1 and "@" in found[0][1]:
            return _make(*found[0])
    raise AddressError(f"Invalid address: {addr!r}")


def header_addresses(message: Message, header: str) -> List[Address]:
    values = [str(v) for v in message.get_all(header, [])]
    return [_make(name, spec) for name, spec in getaddresses(values) if spec]


def partition_recipients(message: Message, envelope: Iterable[object]) -> RecipientSets:
    """
    Reconcile the message's To/Cc/Bcc headers with the envelope recipients.

    Each header keeps only addresses that are on the envelope. Envelope
    addresses that no header mentions are added to Bcc, in envelope order.
    """
    targets = [coerce_address(a) for a in envelope]
    wanted = {_key(a) for a in targets}

    declared: List[Address] = []
    kept: List[List[Address]] = []
    for header in RECIPIENT_HEADERS:
        addrs = header_addresses(message, header)
        declared.extend(addrs)
        kept.append([a for a in addrs if _key(a) in wanted])

    declared_keys = {_key(a) for a in declared}
    bcc = kept[2]
    bcc_keys = {_key(a) for a in bcc}
    for addr in targets:
        k = _key(addr)
        if k not in declared_keys and k not in bcc_keys:
            bcc.append(addr)
            bcc_keys.add(k)

    def _opt(addrs: Sequence[Address]) -> Optional[Tuple[Address, ...]]:
        return tuple(addrs) if addrs else None

    return RecipientSets(to=_opt(kept[0]), cc=_opt(kept[1]), bcc=_opt(bcc))


def apply_recipients(message: Message, sets: RecipientSets) -> None:
    for header, addrs in sets.as_headers():
        del message[header]
        if addrs:
            message[header] = ", ".join(str(a) for a in addrs)
