"""
Worker process — wires the dispatch queue, worker pool and recap scanners
together and runs them until SIGINT/SIGTERM.

Usage:
    health-jobs-worker                      # settings from $HEALTH_JOBS_CONFIG
    health-jobs-worker --workers 8
    health-jobs-worker --no-scheduler       # workers only
"""
from __future__ import annotations

import argparse
import asyncio
import signal
from typing import Optional

from dotenv import load_dotenv

from channels.base import EmailDeliveryAdapter
from channels.email_adapter import create_email_adapter
from config.settings import Settings, load_settings
from database.eligibility import EligibilityStore
from database.session import close_db, create_engine, create_session_factory, init_db
from database.users import SqlUserDirectory
from job_queue.dispatch_queue import DispatchQueue, create_dispatch_queue
from job_queue.producer import EmailJobs
from job_queue.worker import WorkerPool
from mail_jobs.dispatcher import JobDispatcher
from models.schemas import DigestType
from scheduling.scanners import RecapScanner
from scheduling.windows import TriggerWindow
from utils.logging import configure_logging
from utils.observability import Observability
from utils.tracing import configure_tracing, shutdown_tracing


def build_scanners(
    settings: Settings,
    store: EligibilityStore,
    jobs: EmailJobs,
    stop: asyncio.Event,
    observability: Observability,
) -> list[RecapScanner]:
    sched = settings.scheduler
    windows = {
        DigestType.MONTHLY: sched.monthly,
        DigestType.WEEKLY: sched.weekly,
        DigestType.YEARLY: sched.yearly,
    }
    return [
        RecapScanner(
            digest=digest,
            store=store,
            jobs=jobs,
            stop=stop,
            window=TriggerWindow.from_config(window, tz=sched.timezone),
            poll_interval=sched.poll_interval,
            observability=observability,
        )
        for digest, window in windows.items()
    ]


class WorkerRuntime:
    """Owns every long-running task of the worker process and their shared resources."""

    def __init__(
        self,
        settings: Settings,
        observability: Observability = None,
        queue: DispatchQueue = None,
        email_adapter: EmailDeliveryAdapter = None,
        run_scheduler: bool = True,
    ):
        self.settings = settings
        self.obs = observability or Observability()
        self.queue = queue or create_dispatch_queue(settings.queue)
        self.email_adapter = email_adapter or create_email_adapter(settings.mail)
        self.run_scheduler = run_scheduler and settings.scheduler.enabled
        self.stop_event = asyncio.Event()
        self.pool: Optional[WorkerPool] = None
        self.scanners: list[RecapScanner] = []
        self._scanner_tasks: list[asyncio.Task] = []
        self._engine = None

    async def start(self):
        s = self.settings
        await self.queue.connect()
        await self.email_adapter.initialize()

        dispatcher = JobDispatcher(self.email_adapter, app=s.app, observability=self.obs)
        self.pool = WorkerPool(
            queue=self.queue,
            dispatcher=dispatcher,
            size=s.workers.pool_size,
            worker_id=s.workers.worker_id,
            observability=self.obs,
            pop_timeout=s.queue.pop_timeout,
            error_backoff=s.queue.error_backoff,
            stop=self.stop_event,
        )
        await self.pool.start()

        if self.run_scheduler:
            self._engine = create_engine(s.database)
            await init_db(self._engine)
            sessions = create_session_factory(self._engine)
            store = EligibilityStore(sessions, SqlUserDirectory(sessions))
            jobs = EmailJobs(self.queue, observability=self.obs)
            self.scanners = build_scanners(s, store, jobs, self.stop_event, self.obs)
            self._scanner_tasks = [
                asyncio.create_task(sc.run(), name=f"scanner-{sc.digest.value}")
                for sc in self.scanners
            ]

        self.obs.logger.info("worker_runtime_started",
                             environment=s.app.environment,
                             workers=s.workers.pool_size,
                             scanners=len(self.scanners))

    async def shutdown(self):
        self.stop_event.set()
        grace = self.settings.workers.shutdown_grace
        if self.pool:
            await self.pool.stop(grace=grace)
        if self._scanner_tasks:
            _done, pending = await asyncio.wait(self._scanner_tasks, timeout=grace)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._scanner_tasks, return_exceptions=True)
        await self.email_adapter.close()
        await self.queue.close()
        if self._engine is not None:
            await close_db(self._engine)
        self.obs.logger.info("worker_runtime_stopped", metrics=self.obs.metrics.to_dict())

    async def run_until_stopped(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop_event.set)
            except NotImplementedError:
                pass  # Windows: rely on KeyboardInterrupt
        try:
            await self.start()
            await self.stop_event.wait()
        finally:
            await self.shutdown()


def _parse_args(argv: list[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the background email job worker")
    parser.add_argument("--config", help="Path to settings YAML")
    parser.add_argument("--workers", type=int, help="Override worker pool size")
    parser.add_argument("--no-scheduler", action="store_true", help="Do not run recap scanners")
    return parser.parse_args(argv)


def run(argv: list[str] = None):
    load_dotenv()
    args = _parse_args(argv)
    settings = load_settings(args.config)
    if args.workers:
        settings.workers.pool_size = args.workers

    configure_logging(settings.logging.level, settings.logging.json)
    tracer_provider = configure_tracing(settings.telemetry, environment=settings.app.environment)
    runtime = WorkerRuntime(settings, run_scheduler=not args.no_scheduler)
    try:
        asyncio.run(runtime.run_until_stopped())
    except KeyboardInterrupt:
        pass
    finally:
        shutdown_tracing(tracer_provider)


if __name__ == "__main__":
    run()
