# context.py
import os
import threading
from typing import Callable, Dict, Mapping, Optional

import requests
from dotenv import load_dotenv
from fastapi import HTTPException

from owamail import ExchangeStore, ExchangeTransport, StoreConfig

load_dotenv(override=True)

# Tests swap this for an in-memory fake; None means a real requests.Session.
SESSION_FACTORY: Optional[Callable[[], requests.Session]] = None

ACCOUNTS: Dict[str, StoreConfig] = {}
_accounts_lock = threading.Lock()


def parse_accounts(spec: str, environ: Optional[Mapping[str, str]] = None) -> Dict[str, StoreConfig]:
    """
    OWAMAIL_ACCOUNTS="work,home" reads OWAMAIL_WORK_HOST, OWAMAIL_WORK_USERNAME, ...
    """
    accounts: Dict[str, StoreConfig] = {}
    for acc_id in (s.strip() for s in spec.split(",")):
        if not acc_id:
            continue
        prefix = f"OWAMAIL_{acc_id.upper()}_"
        accounts[acc_id] = StoreConfig.from_env(prefix=prefix, environ=environ)
    return accounts


def reload_accounts_in_memory(environ: Optional[Mapping[str, str]] = None) -> None:
    env = os.environ if environ is None else environ
    with _accounts_lock:
        ACCOUNTS.clear()
        ACCOUNTS.update(parse_accounts(env.get("OWAMAIL_ACCOUNTS", ""), environ=env))


def get_account(account: str) -> StoreConfig:
    config = ACCOUNTS.get(account)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Unknown account: {account}")
    return config


def open_store(account: str) -> ExchangeStore:
    store = ExchangeStore(get_account(account), session_factory=SESSION_FACTORY)
    store.connect()
    return store


def open_transport(account: str) -> ExchangeTransport:
    transport = ExchangeTransport(get_account(account), session_factory=SESSION_FACTORY)
    transport.connect()
    return transport


reload_accounts_in_memory()
