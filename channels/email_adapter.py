"""
Email Channel Adapters — plain-text sends through an HTTP email provider.

Provides:
- MailgunEmailAdapter: form POST to the Mailgun messages API over httpx
- InMemoryEmailAdapter: records every send; for development and tests
- create_email_adapter(): pick one from MailConfig
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from channels.base import EmailDeliveryAdapter, TransportError
from config.settings import MailConfig

logger = structlog.get_logger()


class MailgunEmailAdapter(EmailDeliveryAdapter):
    """
    Sends through Mailgun's `/v3/<domain>/messages` endpoint.

    One httpx.AsyncClient is shared by every worker in the process.
    """

    name = "mailgun"

    def __init__(self, config: MailConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.mailgun_api_base,
                auth=("api", self.config.mailgun_api_key),
                timeout=httpx.Timeout(self.config.timeout, connect=10.0),
            )
        return self._client

    @property
    def sender(self) -> str:
        return f"{self.config.from_name} <{self.config.from_email}>"

    async def send(self, to: str, subject: str, body: str) -> bool:
        client = self._get_client()
        try:
            response = await client.post(
                f"/v3/{self.config.mailgun_domain}/messages",
                data={
                    "from": self.sender,
                    "to": to,
                    "subject": subject,
                    "text": body,
                },
            )
        except httpx.TransportError as e:
            logger.error("email_transport_error", to=to, error=str(e))
            raise TransportError(f"Mailgun unreachable: {e}", channel=self.name) from e

        if response.is_success:
            logger.info("email_sent", to=to, subject=subject, status=response.status_code)
            return True

        logger.warning("email_rejected",
                       to=to,
                       subject=subject,
                       status=response.status_code,
                       detail=response.text[:200])
        return False

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()


@dataclass
class SentEmail:
    to: str
    subject: str
    body: str
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryEmailAdapter(EmailDeliveryAdapter):
    """
    Records sends instead of delivering them.

    `accept` decides the send result, `fail_with` makes every send raise;
    both exist so tests can drive each delivery outcome.
    """

    name = "memory"

    def __init__(self, accept: bool = True, fail_with: Exception = None):
        self.accept = accept
        self.fail_with = fail_with
        self.sent: list[SentEmail] = []

    async def send(self, to: str, subject: str, body: str) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(SentEmail(to=to, subject=subject, body=body))
        logger.info("email_recorded", to=to, subject=subject, accepted=self.accept)
        return self.accept


def create_email_adapter(config: MailConfig = None, **overrides: Any) -> EmailDeliveryAdapter:
    """Factory: create the configured provider adapter."""
    config = config or MailConfig()
    if config.provider == "mailgun":
        return MailgunEmailAdapter(config, **overrides)
    return InMemoryEmailAdapter(**overrides)
