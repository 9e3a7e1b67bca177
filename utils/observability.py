"""
Observability handle — built once at startup and passed to every component.

Holds the root structlog logger, the in-process job counters and the
OpenTelemetry tracer, so no component reaches for a module-level registry.
"""
from __future__ import annotations

from collections import Counter
from typing import Any

import structlog
from opentelemetry import trace


class JobMetrics:
    """Counters for enqueue, dispatch and scan outcomes."""

    def __init__(self):
        self.enqueued: Counter[str] = Counter()
        self.enqueue_failed: Counter[str] = Counter()
        self.delivered: Counter[str] = Counter()
        self.rejected: Counter[str] = Counter()     # provider answered non-2xx
        self.failed: Counter[str] = Counter()       # handler raised
        self.malformed: int = 0
        self.pop_errors: int = 0
        self.scan_passes: Counter[str] = Counter()

    def record_enqueue(self, kind: str, ok: bool = True):
        (self.enqueued if ok else self.enqueue_failed)[kind] += 1

    def record_outcome(self, kind: str, delivered: bool):
        (self.delivered if delivered else self.rejected)[kind] += 1

    def record_failure(self, kind: str):
        self.failed[kind] += 1

    def record_malformed(self):
        self.malformed += 1

    def record_pop_error(self):
        self.pop_errors += 1

    def record_scan(self, digest: str):
        self.scan_passes[digest] += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "enqueued": dict(self.enqueued),
            "enqueue_failed": dict(self.enqueue_failed),
            "delivered": dict(self.delivered),
            "rejected": dict(self.rejected),
            "failed": dict(self.failed),
            "malformed": self.malformed,
            "pop_errors": self.pop_errors,
            "scan_passes": dict(self.scan_passes),
        }


class Observability:

    def __init__(self, service: str = "health-jobs", logger=None, metrics: JobMetrics = None, tracer=None):
        self.service = service
        self.logger = logger or structlog.get_logger().bind(service=service)
        self.metrics = metrics or JobMetrics()
        # Resolves against whatever provider configure_tracing() installed, no-op otherwise
        self.tracer = tracer or trace.get_tracer(service)

    def bind(self, **context: Any):
        """A child logger carrying extra context (worker id, digest, …)."""
        return self.logger.bind(**context)
