"""
Delivery channel base — the contract job handlers use to send email.

Provides:
- ChannelError / TransportError: structured error hierarchy
- EmailDeliveryAdapter: abstract send(to, subject, body) -> bool

Result semantics:
  True            provider accepted the message (2xx)
  False           provider answered, but not 2xx — best effort, not retried
  TransportError  the provider could not be reached — not retried either
"""
from __future__ import annotations

import abc
from typing import Any


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class TransportError(ChannelError):
    """Connection-level failure talking to the email provider."""

    def __init__(self, message: str, channel: str = "email"):
        super().__init__(message, channel, retryable=False)


# ══════════════════════════════════════════════════════════════
#  EMAIL DELIVERY ADAPTER — Abstract Base
# ══════════════════════════════════════════════════════════════

class EmailDeliveryAdapter(abc.ABC):
    """Thin client for an external email provider. No queueing, no backoff."""

    name: str = "email"

    async def initialize(self, config: dict[str, Any] = None) -> None:
        """Optional setup hook (open clients, read credentials)."""
        return None

    async def close(self) -> None:
        return None

    @abc.abstractmethod
    async def send(self, to: str, subject: str, body: str) -> bool:
        ...
