"""
Job dispatch — route a decoded Job to its handler, first by task_type,
then (for email jobs) by email_type.

A handler returns True when the provider accepted the email, False when it
refused it, and raises on anything else. The worker logs all three; none
of them puts the job back on the queue.
"""
from __future__ import annotations

from typing import Awaitable, Callable

from channels.base import EmailDeliveryAdapter
from config.settings import AppConfig
from job_queue.errors import UnknownJobType
from mail_jobs.messages import BUILDERS
from models.jobs import Job, JobEmail, TaskType
from utils.observability import Observability


class JobDispatcher:

    def __init__(
        self,
        email_adapter: EmailDeliveryAdapter,
        app: AppConfig = None,
        observability: Observability = None,
    ):
        self.email_adapter = email_adapter
        self.app = app or AppConfig()
        self.obs = observability or Observability()
        self.logger = self.obs.bind(component="dispatcher")
        self._routes: dict[TaskType, Callable[[Job], Awaitable[bool]]] = {
            TaskType.EMAIL: self._handle_email_task,
        }

    async def handle(self, job: Job) -> bool:
        route = self._routes.get(job.task_type)
        if route is None:
            raise UnknownJobType(f"No handler for task type {job.task_type.value}")
        return await route(job)

    async def _handle_email_task(self, job: Job) -> bool:
        return await self.handle_mail_job(job.email_job())

    async def handle_mail_job(self, job_email: JobEmail) -> bool:
        builder = BUILDERS.get(job_email.email_type)
        if builder is None:
            raise UnknownJobType(f"No handler for email type {job_email.email_type.value}")

        payload = job_email.payload()
        to, subject, body = builder(self.app, payload)
        self.logger.info("mail_job_sending",
                         email_type=job_email.email_type.value,
                         to=to)
        return await self.email_adapter.send(to, subject, body)
