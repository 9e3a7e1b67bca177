"""
Worker Pool — N identical loops popping job envelopes off the dispatch queue.

Per-worker state machine (no terminal state; runs until stopped):

  ┌──────┐  BLPOP timeout   ┌──────┐
  │ Idle │─────────────────▶│ Idle │   (shutdown-check tick)
  └──┬───┘                  └──────┘
     │ body popped
     ▼
  ┌─────────────┐  decode → dispatch(task_type, email_type) → log
  │ Dispatching │──────────────────────────────────────────────▶ Idle
  └─────────────┘

Failure policy, all per message:
  - MalformedEnvelope   logged, dead-lettered if configured, dropped
  - delivery error      logged with channel and retryable, dead-lettered, dropped
  - handler raised      logged, dead-lettered if configured, dropped
  - handler False       logged as rejected; no retry
  - pop transport error logged, short backoff, back to Idle

Workers are interchangeable: no partitioning, no affinity. The atomic pop
is the only coordination between them.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Union

from channels.base import ChannelError
from job_queue.dispatch_queue import DispatchQueue
from job_queue.errors import MalformedEnvelope, QueueTransportError
from mail_jobs.dispatcher import JobDispatcher
from models.jobs import decode
from utils.observability import Observability
from utils.timing import sleep_or_stop


class Worker:

    def __init__(
        self,
        name: str,
        queue: DispatchQueue,
        dispatcher: JobDispatcher,
        stop: asyncio.Event,
        observability: Observability = None,
        pop_timeout: float = 5.0,
        error_backoff: float = 1.0,
    ):
        self.name = name
        self.queue = queue
        self.dispatcher = dispatcher
        self.stop = stop
        self.obs = observability or Observability()
        self.logger = self.obs.bind(worker=name)
        self.pop_timeout = pop_timeout
        self.error_backoff = error_backoff
        self.processed = 0

    async def run(self):
        self.logger.info("worker_started", pop_timeout=self.pop_timeout)
        while not self.stop.is_set():
            try:
                body = await self.queue.dequeue_blocking(self.pop_timeout)
            except QueueTransportError as e:
                self.obs.metrics.record_pop_error()
                self.logger.error("worker_fetch_failed", error=str(e))
                await sleep_or_stop(self.stop, self.error_backoff)
                continue

            if body is None:
                continue

            await self.process(body)
        self.logger.info("worker_stopped", processed=self.processed)

    async def process(self, body: Union[bytes, str]) -> Optional[bool]:
        """
        Decode and dispatch one popped body.

        Returns the handler's delivered flag, or None when the message was
        dropped (malformed or handler error). Never raises for a bad message.
        """
        self.processed += 1
        try:
            job = decode(body)
        except MalformedEnvelope as e:
            self.obs.metrics.record_malformed()
            self.logger.warning("job_malformed_dropped", error=str(e))
            await self._dead_letter(body, f"malformed: {e}")
            return None

        tags = job.describe()
        kind = tags.get("email_type") or tags["task_type"]
        try:
            with self.obs.tracer.start_as_current_span("job.dispatch", attributes={"worker": self.name, **tags}) as span:
                delivered = await self.dispatcher.handle(job)
                span.set_attribute("job.delivered", bool(delivered))
        except ChannelError as e:
            # Provider unreachable; the job is dropped whatever `retryable` says
            self.obs.metrics.record_failure(kind)
            self.logger.error("job_delivery_failed",
                              error=str(e),
                              channel=e.channel,
                              retryable=e.retryable,
                              **tags)
            await self._dead_letter(body, f"{type(e).__name__}: {e}")
            return None
        except Exception as e:
            self.obs.metrics.record_failure(kind)
            self.logger.error("job_failed", error=str(e), exc_info=True, **tags)
            await self._dead_letter(body, f"{type(e).__name__}: {e}")
            return None

        self.obs.metrics.record_outcome(kind, delivered)
        if delivered:
            self.logger.info("job_delivered", **tags)
        else:
            self.logger.warning("job_not_delivered", **tags)
        return delivered

    async def _dead_letter(self, body: Union[bytes, str], reason: str):
        try:
            await self.queue.dead_letter(body, reason)
        except QueueTransportError as e:
            self.logger.error("dead_letter_failed", error=str(e))


class WorkerPool:
    """
    Fixed-size pool of workers sharing one queue, one dispatcher and one
    stop event.

    Usage:
        pool = WorkerPool(queue, dispatcher, size=4)
        await pool.start()
        ...
        await pool.stop()
    """

    def __init__(
        self,
        queue: DispatchQueue,
        dispatcher: JobDispatcher,
        size: int = 4,
        worker_id: str = "worker-1",
        observability: Observability = None,
        pop_timeout: float = 5.0,
        error_backoff: float = 1.0,
        stop: asyncio.Event = None,
    ):
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.queue = queue
        self.dispatcher = dispatcher
        self.size = size
        self.worker_id = worker_id
        self.obs = observability or Observability()
        self.stop_event = stop or asyncio.Event()
        self.workers = [
            Worker(
                name=f"{worker_id}-{i}",
                queue=queue,
                dispatcher=dispatcher,
                stop=self.stop_event,
                observability=self.obs,
                pop_timeout=pop_timeout,
                error_backoff=error_backoff,
            )
            for i in range(size)
        ]
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> list[asyncio.Task]:
        """Start every worker as a background task. Returns the task handles."""
        self.obs.logger.info("worker_pool_starting", worker_id=self.worker_id, size=self.size)
        self._tasks = [
            asyncio.create_task(w.run(), name=w.name) for w in self.workers
        ]
        return self._tasks

    async def wait(self):
        """Block until every worker has exited; log any that crashed."""
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for worker, result in zip(self.workers, results):
            if isinstance(result, Exception):
                self.obs.logger.error("worker_crashed", worker=worker.name, error=str(result))

    async def stop(self, grace: float = 10.0):
        """Signal every worker, give in-flight jobs `grace` seconds, then cancel."""
        self.stop_event.set()
        if not self._tasks:
            return
        _done, pending = await asyncio.wait(self._tasks, timeout=grace)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self.obs.logger.info("worker_pool_stopped", cancelled=len(pending))
