"""
Connectivity check against an Exchange mailbox.

Example:
  python -m owamail --host https://mail.example.com --username 'EXAMPLE\\jdoe:jdoe@example.com' --all --limit 10
  python -m owamail --fetch 1 > first.eml

Values not given on the command line come from OWAMAIL_* variables (a .env file is honoured).
"""
from __future__ import annotations

import argparse
import getpass
import sys
from dataclasses import replace

from dotenv import load_dotenv

from owamail.config import StoreConfig
from owamail.errors import OwamailError
from owamail.log import get_logger
from owamail.store import ExchangeStore


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="owamail", description="List (and optionally dump) messages in an Exchange inbox over WebDAV.")
    p.add_argument("--host", help="Exchange server, host name or URL (https://host:port)")
    p.add_argument("--username", help="Login; 'user:mailbox[opt=v,...]' also selects the mailbox")
    p.add_argument("--password", help="Password (prompted when omitted)")
    p.add_argument("--mailbox", help="Mailbox name under /exchange/")
    p.add_argument("--limit", type=int, help="Maximum number of messages to list")
    p.add_argument("--all", dest="unfiltered", action="store_true", help="Include messages already read")
    p.add_argument("--exchange-version", dest="version", choices=("2003", "2007"), help="Exchange sign-on variant")
    p.add_argument("--fetch", type=int, metavar="N", help="Write message N to stdout")
    p.add_argument("--debug", action="store_true", help="Log HTTP traffic to stderr")
    p.set_defaults(unfiltered=None, debug=None)
    return p


def main(argv=None) -> int:
    load_dotenv()
    ns = build_parser().parse_args(argv)

    base = StoreConfig.from_env()
    overrides = {
        k: v
        for k, v in vars(ns).items()
        if v is not None and k != "fetch"
    }
    if "password" not in overrides and base.password is None:
        overrides["password"] = getpass.getpass("Password: ")
    config = replace(base, **overrides)

    log = get_logger(debug=config.debug)

    try:
        with ExchangeStore(config) as store:
            with store.get_folder() as folder:
                for message in folder.messages:
                    print(f"{message.number}\t{message.ref.url}", file=sys.stderr if ns.fetch else sys.stdout)
                if ns.fetch:
                    content = folder.get_message(ns.fetch).content()
                    with content.open() as fh:
                        sys.stdout.buffer.write(fh.read())
                    content.discard()
    except (OwamailError, IndexError) as e:
        log.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
