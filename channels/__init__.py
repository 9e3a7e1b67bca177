"""Email delivery adapters."""
from channels.base import ChannelError, TransportError, EmailDeliveryAdapter
from channels.email_adapter import (
    MailgunEmailAdapter, InMemoryEmailAdapter, SentEmail, create_email_adapter,
)

__all__ = [
    "ChannelError", "TransportError", "EmailDeliveryAdapter",
    "MailgunEmailAdapter", "InMemoryEmailAdapter", "SentEmail", "create_email_adapter",
]
