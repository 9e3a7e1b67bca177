"""
Recap scanners — one long-running loop per digest type that turns
eligibility rows into dispatch-queue jobs.

Each tick:
  1. seed   — inside the digest's trigger window, queue every opted-in user
              (at most once per window, see EligibilityStore.seed_window)
  2. drain  — for every pending row: enqueue a recap job, then flip the row
  3. sleep  — until the next poll or the next window opens, whichever is first

Duplicate suppression is the processed flag alone. Flipping after the
enqueue gives at-least-once: a crash between the two re-enqueues that row
on the next tick, and a row already flipped is never enqueued again.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from database.eligibility import EligibilityStore
from job_queue.producer import EmailJobs
from models.schemas import DigestType
from scheduling.windows import TriggerWindow
from utils.observability import Observability
from utils.timing import sleep_until


@dataclass
class ScanReport:
    digest: str
    seeded: int = 0
    enqueued: int = 0
    failed: int = 0
    skipped: int = 0


class RecapScanner:

    def __init__(
        self,
        digest: DigestType,
        store: EligibilityStore,
        jobs: EmailJobs,
        stop: asyncio.Event,
        window: Optional[TriggerWindow] = None,
        poll_interval: float = 300.0,
        observability: Observability = None,
    ):
        self.digest = digest
        self.store = store
        self.jobs = jobs
        self.stop = stop
        self.window = window
        self.poll_interval = poll_interval
        self.obs = observability or Observability()
        self.logger = self.obs.bind(scanner=digest.value)

    async def run(self):
        """Tick until the stop event is set."""
        self.logger.info("recap_scanner_started",
                         poll_interval=self.poll_interval,
                         window=repr(self.window) if self.window else None)
        while not self.stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                # Store unreachable or similar; the next tick retries everything
                self.logger.error("recap_scan_failed", error=str(e), exc_info=True)

            wake_at = self.next_wake(datetime.now(timezone.utc))
            if await sleep_until(self.stop, wake_at):
                break
        self.logger.info("recap_scanner_stopped")

    def next_wake(self, now: datetime) -> datetime:
        wake_at = now + timedelta(seconds=self.poll_interval)
        if self.window is not None:
            wake_at = min(wake_at, self.window.next_fire_time(now))
        return wake_at

    async def run_once(self, now: datetime = None) -> ScanReport:
        """One seed-and-drain tick."""
        now = now or datetime.now(timezone.utc)
        report = ScanReport(digest=self.digest.value)

        with self.obs.tracer.start_as_current_span("recap.scan", attributes={"digest": self.digest.value}) as span:
            if self.window is not None:
                window_key = self.window.window_key(now)
                if window_key is not None:
                    self.logger.info("recap_window_open", window=window_key)
                    span.set_attribute("window", window_key)
                    seeded = await self.store.seed_window(self.digest, window_key)
                    report.seeded = seeded or 0

            await self._drain(report, now)
            span.set_attributes({
                "recap.seeded": report.seeded,
                "recap.enqueued": report.enqueued,
                "recap.failed": report.failed,
                "recap.skipped": report.skipped,
            })

        self.obs.metrics.record_scan(self.digest.value)
        if report.enqueued or report.failed or report.seeded or report.skipped:
            self.logger.info("recap_scan_complete",
                             seeded=report.seeded,
                             enqueued=report.enqueued,
                             failed=report.failed,
                             skipped=report.skipped)
        return report

    async def _drain(self, report: ScanReport, now: datetime):
        pending = await self.store.fetch_pending(self.digest)

        for item in pending:
            if item.user is None:
                # User deleted since the row was queued; retire the row
                self.logger.warning("recap_user_missing", row_id=item.row_id, user_id=item.user_id)
                try:
                    await self.store.mark_processed(self.digest, item.row_id, now)
                except Exception as e:
                    report.failed += 1
                    self.logger.error("recap_mark_processed_failed",
                                      row_id=item.row_id,
                                      error=str(e))
                    continue
                report.skipped += 1
                continue

            try:
                await self.jobs.enqueue_recap(self.digest, item.user.email, item.user.username)
            except Exception as e:
                # Row stays pending and is retried next tick; the pass goes on
                report.failed += 1
                self.logger.error("recap_enqueue_failed",
                                  row_id=item.row_id,
                                  user_id=item.user_id,
                                  error=str(e))
                continue

            report.enqueued += 1
            try:
                await self.store.mark_processed(self.digest, item.row_id, now)
            except Exception as e:
                # Job is already queued; the row will be enqueued again next tick
                self.logger.error("recap_mark_processed_failed",
                                  row_id=item.row_id,
                                  error=str(e))
