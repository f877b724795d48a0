from owamail.dav.cache import CachedMessage
from owamail.dav.connection import ExchangeConnection, create_connection
from owamail.dav.escape import escape
from owamail.dav.variants import EXCHANGE_2003, EXCHANGE_2007, ExchangeVariant, get_variant

__all__ = [
    "CachedMessage",
    "ExchangeConnection",
    "create_connection",
    "escape",
    "ExchangeVariant",
    "EXCHANGE_2003",
    "EXCHANGE_2007",
    "get_variant",
]
