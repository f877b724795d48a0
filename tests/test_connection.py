import os
import threading
import xml.etree.ElementTree as ET
from dataclasses import replace
from email.message import EmailMessage

import pytest

from owamail.dav import xml
from owamail.dav.connection import ExchangeConnection, SourceAddressAdapter, create_connection
from owamail.dav.variants import EXCHANGE_2007
from owamail.errors import AuthError, ConfigError, ExchangeError, NotConnectedError, TransportError
from owamail.types import MessageRef

from fake_dav_server import SERVER, FakeDAVSession, target_hrefs


# -----------------------
# connect / sign-on
# -----------------------

def test_connect_via_challenge_probe(conn, fake):
    conn.connect()

    assert conn.connected
    assert conn.inbox_url == fake.inbox_url
    assert fake.methods() == ["OPTIONS", "PROPFIND"]
    assert fake.requests[0].url == f"{SERVER}/exchange"
    assert fake.sign_on_forms == []


def test_connect_falls_back_to_forms_sign_on(conn, fake):
    fake.probe_status = 401

    conn.connect()

    assert conn.connected
    assert fake.methods() == ["OPTIONS", "POST", "PROPFIND"]
    post = fake.last("POST")
    assert post.url == f"{SERVER}/exchweb/bin/auth/owaauth.dll"
    assert post.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert fake.sign_on_forms == [{
        "destination": [f"{SERVER}/exchange"],
        "flags": ["0"],
        "username": ["EXAMPLE\\jdoe"],
        "password": ["s3cret"],
    }]


def test_sign_on_failure_is_auth_error_and_leaves_disconnected(conn, fake):
    fake.probe_status = 401
    fake.signon_status = 403

    with pytest.raises(AuthError, match="Sign-on failed: 403"):
        conn.connect()

    assert not conn.connected
    assert conn.inbox_url is None
    assert "PROPFIND" not in fake.methods()
    assert fake.all_released


def test_2007_variant_uses_owa_sign_on_path(settings):
    fake = FakeDAVSession(probe_status=401, sign_on_path="/owa/auth/owaauth.dll")
    conn = ExchangeConnection(settings, variant=EXCHANGE_2007, session_factory=lambda: fake)

    conn.connect()

    assert fake.last("POST").url == f"{SERVER}/owa/auth/owaauth.dll"
    assert conn.connected


def test_probe_presents_scoped_credentials(conn, fake):
    conn.connect()

    probe = fake.requests[0]
    assert probe.headers["Authorization"].startswith("Basic ")


def test_credentials_not_sent_to_other_hosts(conn, fake):
    conn.connect()
    fake.requests.clear()

    fake.messages.clear()
    with pytest.raises(ExchangeError):
        conn.fetch(MessageRef("http://elsewhere.example.org/x.EML"))

    assert "Authorization" not in fake.requests[0].headers


@pytest.mark.parametrize("status", [401, 403, 500])
def test_resolver_failure_is_exchange_error(conn, fake, status):
    fake.fail["PROPFIND"] = status

    with pytest.raises(ExchangeError, match="Unable to obtain inbox") as exc_info:
        conn.connect()

    assert exc_info.value.status == status
    assert conn.inbox_url is None
    assert not conn.connected


def test_resolver_without_inbox_element(conn, fake):
    fake.omit_inbox = True

    with pytest.raises(ExchangeError, match="Unable to obtain inbox"):
        conn.connect()

    assert conn.inbox_url is None


def test_propfind_request_shape(conn, fake):
    conn.connect()

    propfind = fake.last("PROPFIND")
    assert propfind.url == f"{SERVER}/exchange/jdoe"
    assert propfind.headers["Content-Type"] == 'text/xml; charset="UTF-8"'
    assert propfind.headers["Depth"] == "0"
    assert propfind.headers["Brief"] == "t"
    assert propfind.body == xml.find_inbox_body()


def test_failed_reconnect_clears_previous_inbox(connected, fake):
    fake.fail["OPTIONS"] = 500
    fake.fail["POST"] = 500

    with pytest.raises(AuthError):
        connected.connect()

    assert not connected.connected


def test_http_client_is_created_once(settings, fake):
    calls = []

    def factory():
        calls.append(1)
        return fake

    conn = ExchangeConnection(settings, session_factory=factory)
    conn.connect()
    conn.list_messages(True)
    assert len(calls) == 1


def test_disconnect_closes_session(connected, fake):
    connected.disconnect()

    assert not connected.connected
    assert fake.closed_count == 1
    with pytest.raises(NotConnectedError):
        connected.list_messages(True)


def test_context_manager_connects_and_disconnects(conn, fake):
    with conn as c:
        assert c.connected
    assert not conn.connected


# -----------------------
# not connected
# -----------------------

@pytest.mark.parametrize(
    "call",
    [
        lambda c: c.list_messages(False),
        lambda c: c.delete([MessageRef("http://h/a.EML")]),
        lambda c: c.mark_read([MessageRef("http://h/a.EML")]),
        lambda c: c.fetch(MessageRef("http://h/a.EML")),
        lambda c: c.send(EmailMessage()),
    ],
)
def test_operations_before_connect_fail_without_io(conn, fake, call):
    with pytest.raises(NotConnectedError):
        call(conn)
    assert fake.requests == []


def test_not_connected_error_is_a_runtime_error():
    assert issubclass(NotConnectedError, RuntimeError)


# -----------------------
# listing
# -----------------------

def test_list_messages_in_server_order(connected, fake):
    urls = [fake.add_message(f"m{i}.EML", b"x") for i in range(3)]

    result = connected.list_messages(True)

    assert result == tuple(urls)
    assert isinstance(result, tuple)


def test_list_unread_only(connected, fake):
    fake.add_message("old.EML", b"x", read=True)
    new = fake.add_message("new.EML", b"x")

    assert connected.list_messages(False) == (new,)


def test_list_empty_inbox(connected):
    assert connected.list_messages(True) == ()


@pytest.mark.parametrize("limit", [1, 5, 250])
def test_positive_limit_sends_range(connected, fake, limit):
    connected.list_messages(False, limit)

    search = fake.last("SEARCH")
    assert search.headers["Range"] == f"rows=0-{limit}"
    assert search.headers["Brief"] == "t"
    assert search.url == fake.inbox_url


@pytest.mark.parametrize("limit", [0, -1, -20])
def test_non_positive_limit_sends_no_range(connected, fake, limit):
    connected.list_messages(False, limit)

    assert "Range" not in fake.last("SEARCH").headers


def test_limit_caps_rows(connected, fake):
    for i in range(5):
        fake.add_message(f"m{i}.EML", b"x")

    assert len(connected.list_messages(True, 2)) == 2


def test_search_bodies_are_stable_per_mode(connected, fake):
    connected.list_messages(False)
    connected.list_messages(True)
    connected.list_messages(False)
    connected.list_messages(True)

    bodies = [r.body for r in fake.requests]
    assert bodies[0] == bodies[2] == xml.search_body(False)
    assert bodies[1] == bodies[3] == xml.search_body(True)
    assert bodies[0] != bodies[1]


def test_search_failure(connected, fake):
    fake.fail["SEARCH"] = 500

    with pytest.raises(ExchangeError, match="Unable to list messages") as exc_info:
        connected.list_messages(True)

    assert exc_info.value.status == 500
    assert fake.all_released


# -----------------------
# delete / mark read
# -----------------------

def test_delete_is_one_batch_request_with_basenames(connected, fake):
    urls = [fake.add_message(f"m{i}.EML", b"x") for i in range(3)]

    connected.delete([MessageRef(u) for u in urls])

    assert fake.methods() == ["BDELETE"]
    req = fake.last("BDELETE")
    assert req.url == fake.inbox_url + "/"
    assert req.headers["If-Match"] == "*"
    assert req.headers["Brief"] == "t"
    assert req.headers["Content-Type"] == 'text/xml; charset="UTF-8"'
    assert target_hrefs(req) == ["m0.EML", "m1.EML", "m2.EML"]
    assert ET.fromstring(req.body).tag == "{DAV:}delete"
    assert fake.messages == {}


def test_mark_read_is_one_batch_request(connected, fake):
    urls = [fake.add_message(f"m{i}.EML", b"x") for i in range(2)]

    connected.mark_read([MessageRef(u) for u in urls])

    req = fake.last("BPROPPATCH")
    assert fake.methods() == ["BPROPPATCH"]
    assert req.url == fake.inbox_url + "/"
    assert target_hrefs(req) == ["m0.EML", "m1.EML"]
    assert ET.fromstring(req.body).find("{DAV:}set/{DAV:}prop/{urn:schemas:httpmail:}read").text == "1"
    assert all(m.read for m in fake.messages.values())


def test_trailing_slash_not_doubled(connected, fake):
    connected.inbox_url = fake.inbox_url + "/"

    connected.mark_read([])

    assert fake.last("BPROPPATCH").url == fake.inbox_url + "/"


@pytest.mark.parametrize("method, call", [
    ("BDELETE", lambda c: c.delete([])),
    ("BPROPPATCH", lambda c: c.mark_read([])),
])
def test_empty_batch_still_sends_one_request(connected, fake, method, call):
    call(connected)

    assert fake.methods() == [method]
    assert target_hrefs(fake.last(method)) == []


def test_plain_url_strings_are_accepted(connected, fake):
    url = fake.add_message("plain.EML", b"x")

    connected.delete([url])

    assert target_hrefs(fake.last("BDELETE")) == ["plain.EML"]


@pytest.mark.parametrize("status", [401, 403, 500])
def test_delete_failure(connected, fake, status):
    fake.fail["BDELETE"] = status

    with pytest.raises(ExchangeError, match="Unable to delete messages"):
        connected.delete([MessageRef(fake.inbox_url + "/a.EML")])
    assert fake.all_released


@pytest.mark.parametrize("status", [401, 403, 500])
def test_mark_read_failure(connected, fake, status):
    fake.fail["BPROPPATCH"] = status

    with pytest.raises(ExchangeError, match="Unable to mark messages read"):
        connected.mark_read([MessageRef(fake.inbox_url + "/a.EML")])
    assert fake.all_released


# -----------------------
# fetch
# -----------------------

def test_fetch_large_message_to_temp_file(connected, fake):
    data = os.urandom(2 * 1024 * 1024)
    url = fake.add_message("big.EML", data)

    cached = connected.fetch(MessageRef(url, folder="INBOX"))

    assert fake.last("GET").headers["Translate"] == "F"
    assert fake.raws[-1].released
    assert cached.folder == "INBOX"
    assert cached.size == len(data)
    assert cached.read_bytes() == data
    with cached.open() as a, cached.open() as b:
        assert a.read(10) == data[:10]
        assert b.read() == data
    cached.discard()


def test_fetch_escapes_url(connected, fake):
    url = fake.add_message("Café menu #2.EML", b"Subject: hi\r\n\r\nbody\r\n")

    cached = connected.fetch(MessageRef(url))

    assert fake.last("GET").url == fake.inbox_url + "/Caf%E9%20menu%20%232.EML"
    assert cached.as_email()["Subject"] == "hi"
    cached.discard()


def test_fetch_failure(connected, fake):
    with pytest.raises(ExchangeError, match="Unable to fetch message: 404"):
        connected.fetch(MessageRef(fake.inbox_url + "/missing.EML"))
    assert fake.all_released


def test_fetch_io_error_removes_temp_file(connected, fake, monkeypatch, tmp_path):
    url = fake.add_message("a.EML", b"x" * 200_000)
    monkeypatch.setattr("tempfile.tempdir", str(tmp_path))

    def broken(self, chunk_size=1, decode_unicode=False):
        yield b"partial"
        raise OSError("connection reset")

    monkeypatch.setattr("requests.Response.iter_content", broken)

    with pytest.raises(OSError, match="connection reset"):
        connected.fetch(MessageRef(url))

    assert list(tmp_path.iterdir()) == []


# -----------------------
# send
# -----------------------

def test_send_puts_message_to_submission_uri(connected, fake):
    msg = EmailMessage()
    msg["To"] = "a@example.com"
    msg["Subject"] = "hello"
    msg.set_content("body")

    connected.send(msg)

    put = fake.last("PUT")
    assert put.url == f"{SERVER}/exchange/jdoe/%23%23DavMailSubmissionURI%23%23/"
    assert put.headers["Content-Type"] == "message/rfc822"
    assert put.headers["Translate"] == "f"
    assert fake.sent == [msg.as_bytes()]


def test_send_failure(connected, fake):
    fake.fail["PUT"] = 500

    with pytest.raises(TransportError, match="Unable to send message: 500"):
        connected.send(EmailMessage())


# -----------------------
# plumbing
# -----------------------

def test_every_response_is_released(connected, fake):
    url = fake.add_message("a.EML", b"x")
    connected.list_messages(True)
    connected.fetch(MessageRef(url)).discard()
    connected.mark_read([MessageRef(url)])
    connected.delete([MessageRef(url)])

    assert fake.raws
    assert fake.all_released
    assert all(raw.drained for raw in fake.raws)


def test_timeouts_are_passed_in_seconds(settings, fake):
    conn = ExchangeConnection(
        replace(settings, timeout=30_000, connect_timeout=5_000),
        session_factory=lambda: fake,
    )
    conn.connect()

    assert fake.send_kwargs[0]["timeout"] == (5.0, 30.0)


def test_non_positive_timeouts_mean_none(conn, fake):
    conn.connect()

    assert fake.send_kwargs[0]["timeout"] == (None, None)


def test_local_address_mounts_source_adapter(settings, fake):
    conn = ExchangeConnection(replace(settings, local_address="127.0.0.1"), session_factory=lambda: fake)
    conn.connect()

    adapter = fake.get_adapter(SERVER)
    assert isinstance(adapter, SourceAddressAdapter)
    assert adapter.source_address == "127.0.0.1"


def test_operations_are_serialized(connected, fake):
    for i in range(5):
        fake.add_message(f"m{i}.EML", b"x")
    errors = []

    def worker():
        try:
            for _ in range(10):
                assert len(connected.list_messages(True)) == 5
        except Exception as e:  # pragma: no cover - surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert fake.max_active == 1


def test_create_connection_selects_variant(settings, fake):
    conn = create_connection(replace(settings, version="2007"), session_factory=lambda: fake)

    assert isinstance(conn, ExchangeConnection)
    assert conn.variant is EXCHANGE_2007


def test_create_connection_rejects_unknown_version(settings):
    with pytest.raises(ConfigError, match="Unsupported Exchange version"):
        create_connection(replace(settings, version="2010"))


def test_batch_targets_use_message_basenames(connected, fake):
    refs = [MessageRef(fake.inbox_url + "/Re: lunch.EML"), fake.inbox_url + "/plain.EML"]

    connected.mark_read(refs)

    assert target_hrefs(fake.last("BPROPPATCH")) == [refs[0].basename, "plain.EML"]
    assert refs[0].basename == "Re: lunch.EML"
