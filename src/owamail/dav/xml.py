# owamail/dav/xml.py
from __future__ import annotations

import threading
import xml.etree.ElementTree as ET
from importlib import resources
from typing import Callable, Dict, Iterable, Iterator, Optional

DAV = "DAV:"
HTTPMAIL = "urn:schemas:httpmail:"

XML_CONTENT_TYPE = 'text/xml; charset="UTF-8"'

UNREAD_MESSAGES_SQL = "get-unread-messages.sql"
ALL_MESSAGES_SQL = "get-all-messages.sql"

# Process-wide, written once per key, read-only afterwards.
_memo: Dict[str, object] = {}
_memo_lock = threading.Lock()


def _memoized(key: str, build: Callable[[], object]):
    value = _memo.get(key)
    if value is None:
        with _memo_lock:
            value = _memo.get(key)
            if value is None:
                value = build()
                _memo[key] = value
    return value


def _dav(tag: str) -> str:
    return f"{{{DAV}}}{tag}"


def _httpmail(tag: str) -> str:
    return f"{{{HTTPMAIL}}}{tag}"


def _serialize(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding="utf-8", xml_declaration=True, default_namespace=DAV)


# -----------------------
# Resources
# -----------------------

def sql_resource(name: str) -> str:
    def _load() -> str:
        path = resources.files("owamail.dav") / "sql" / name
        return path.read_text(encoding="utf-8").strip()

    return _memoized(f"sql:{name}", _load)


# -----------------------
# Request bodies
# -----------------------

def find_inbox_body() -> bytes:
    def _build() -> bytes:
        propfind = ET.Element(_dav("propfind"))
        prop = ET.SubElement(propfind, _dav("prop"))
        ET.SubElement(prop, _httpmail("inbox"))
        return _serialize(propfind)

    return _memoized("body:find-inbox", _build)


def _search_body(sql: str) -> bytes:
    request = ET.Element(_dav("searchrequest"))
    ET.SubElement(request, _dav("sql")).text = sql
    return _serialize(request)


def search_body(include_read: bool) -> bytes:
    """Canned SEARCH body: all messages when include_read, else unread only."""
    name = ALL_MESSAGES_SQL if include_read else UNREAD_MESSAGES_SQL
    return _memoized(f"body:search:{name}", lambda: _search_body(sql_resource(name)))


def _target(parent: ET.Element, hrefs: Iterable[str]) -> None:
    target = ET.SubElement(parent, _dav("target"))
    for href in hrefs:
        ET.SubElement(target, _dav("href")).text = href


def delete_body(hrefs: Iterable[str]) -> bytes:
    delete = ET.Element(_dav("delete"))
    _target(delete, hrefs)
    return _serialize(delete)


def mark_read_body(hrefs: Iterable[str]) -> bytes:
    update = ET.Element(_dav("propertyupdate"))
    _target(update, hrefs)
    prop = ET.SubElement(ET.SubElement(update, _dav("set")), _dav("prop"))
    ET.SubElement(prop, _httpmail("read")).text = "1"
    return _serialize(update)


# -----------------------
# Response parsing
# -----------------------

def iter_text(chunks: Iterable[bytes], namespace: str, local_name: str) -> Iterator[str]:
    """
    Stream `chunks` through a pull parser and yield the text of every element
    whose namespace and local name both match, in document order.
    """
    tag = f"{{{namespace}}}{local_name}"
    parser = ET.XMLPullParser(events=("end",))

    def _events() -> Iterator[str]:
        for _event, elem in parser.read_events():
            if elem.tag == tag:
                yield elem.text or ""
            elem.clear()

    for chunk in chunks:
        if chunk:
            parser.feed(chunk)
            yield from _events()
    parser.close()
    yield from _events()


def iter_hrefs(chunks: Iterable[bytes]) -> Iterator[str]:
    return iter_text(chunks, DAV, "href")


def first_inbox(chunks: Iterable[bytes]) -> Optional[str]:
    return next(iter_text(chunks, HTTPMAIL, "inbox"), None)
