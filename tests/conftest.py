import os

# webapp/main.py configures its login gate from the environment at import time
os.environ.setdefault("OWAMAIL_WEB_AUTH_MODE", "open")

import pytest

from owamail.config import ConnectionSettings
from owamail.dav.connection import ExchangeConnection

from fake_dav_server import MAILBOX, SERVER, FakeDAVSession


@pytest.fixture
def fake():
    return FakeDAVSession()


@pytest.fixture
def settings():
    return ConnectionSettings(
        server=SERVER,
        mailbox=MAILBOX,
        username="EXAMPLE\\jdoe",
        password="s3cret",
        auth_scheme="basic",
    )


@pytest.fixture
def conn(settings, fake):
    return ExchangeConnection(settings, session_factory=lambda: fake)


@pytest.fixture
def connected(conn, fake):
    conn.connect()
    fake.requests.clear()
    return conn
