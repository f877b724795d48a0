from owamail.smtp.recipients import RecipientSets, apply_recipients, partition_recipients
from owamail.smtp.transport import ExchangeTransport

__all__ = [
    "ExchangeTransport",
    "RecipientSets",
    "apply_recipients",
    "partition_recipients",
]
