"""
Producer helpers — how request handlers and scanners put email jobs on
the dispatch queue.

Enqueueing is fire-and-forget: the caller learns whether the append to the
list worked, never whether the email went out. Only QueueTransportError
reaches the caller (an HTTP handler turns it into a 500).
"""
from __future__ import annotations

from job_queue.dispatch_queue import DispatchQueue
from models.jobs import (
    DailyUsageRecapPayload, EmailPayload, EmailType, Job, RecapPayload,
    RegisterPayload,
)
from models.schemas import DigestType
from utils.observability import Observability


class EmailJobs:

    def __init__(self, queue: DispatchQueue, observability: Observability = None):
        self.queue = queue
        self.obs = observability or Observability()
        self.logger = self.obs.bind(component="email_jobs")

    async def _push(self, email_type: EmailType, payload: EmailPayload) -> Job:
        job = Job.email(email_type, payload)
        try:
            await self.queue.enqueue(job)
        except Exception:
            self.obs.metrics.record_enqueue(email_type.value, ok=False)
            raise
        self.obs.metrics.record_enqueue(email_type.value)
        return job

    async def send_register_email(self, email: str, username: str, token: str) -> Job:
        return await self._push(
            EmailType.REGISTRATION,
            RegisterPayload(email=email, username=username, token=token),
        )

    async def send_password_reset_email(self, email: str, username: str, token: str) -> Job:
        return await self._push(
            EmailType.RESET_PASSWORD,
            RegisterPayload(email=email, username=username, token=token),
        )

    async def send_email_change_email(self, email: str, username: str, token: str) -> Job:
        return await self._push(
            EmailType.EMAIL_CHANGE,
            RegisterPayload(email=email, username=username, token=token),
        )

    async def send_daily_usage_recap(self, email: str, date: str, usage_summary: str) -> Job:
        return await self._push(
            EmailType.DAILY_USAGE_RECAP,
            DailyUsageRecapPayload(email=email, date=date, usage_summary=usage_summary),
        )

    async def enqueue_recap(self, digest: DigestType, email: str, username: str) -> Job:
        job = await self._push(
            digest.email_type,
            RecapPayload(email=email, username=username),
        )
        self.logger.info("recap_enqueued", digest=digest.value, username=username)
        return job
