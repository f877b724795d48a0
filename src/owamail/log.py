from __future__ import annotations

import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "owamail"
PASSWORD_MASK = "<password>"


def get_logger(
    name: str = PACKAGE_LOGGER,
    *,
    debug: bool = False,
    logfile: Optional[str] = None,
    fmt: str = "%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt: str = "%Y-%m-%d %H:%M:%S",
) -> logging.Logger:
    """
    Return a logger with a stderr handler attached once.
    debug=True switches the logger to DEBUG, otherwise it stays at INFO.
    """
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG if debug else logging.INFO)

    if log.handlers:
        return log

    formatter = logging.Formatter(fmt, datefmt=datefmt)

    h = logging.StreamHandler(sys.stderr)
    h.setFormatter(formatter)
    log.addHandler(h)

    if logfile:
        h = logging.FileHandler(logfile)
        h.setFormatter(formatter)
        log.addHandler(h)

    return log


def mask_password(password: Optional[str], *, reveal: bool = False) -> Optional[str]:
    if password is None:
        return None
    return password if reveal else PASSWORD_MASK
