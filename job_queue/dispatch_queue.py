"""
Dispatch Queue — the single shared FIFO list of job envelopes.

Queue Topology:
  jobs        — Redis list; producers RPUSH encoded jobs, workers BLPOP them
  jobs:dead   — optional dead-letter list for bodies a worker had to drop

Guarantees:
  - FIFO per producer (RPUSH order); no ordering across producers
  - BLPOP hands each body to exactly one worker; no locks needed
  - a popped body has no durability: if its worker dies, it is gone

Message Schema: see models.jobs (Job → JobEmail → payload), UTF-8 JSON.
"""
from __future__ import annotations

import asyncio
import json
import structlog
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional, Union

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import QueueConfig
from job_queue.errors import QueueTransportError
from models.jobs import Job, encode

logger = structlog.get_logger()


class Queues:
    JOBS = "jobs"
    DEAD = "jobs:dead"


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class DispatchQueue(ABC):
    """Abstract dispatch queue interface."""

    def __init__(self, queue_key: str = Queues.JOBS, dead_letter_key: str = ""):
        self.queue_key = queue_key
        self.dead_letter_key = dead_letter_key

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def enqueue_raw(self, body: Union[bytes, str], key: str = None):
        """Append an encoded body to the tail of a list (default: the job list)."""
        ...

    @abstractmethod
    async def dequeue_blocking(self, timeout: float) -> Optional[bytes]:
        """
        Pop the head body, waiting up to `timeout` seconds.
        Returns None on timeout; raises QueueTransportError if unreachable.
        """
        ...

    @abstractmethod
    async def queue_length(self, key: str = None) -> int:
        ...

    async def enqueue(self, job: Job):
        """
        Encode and append a job. Success means the append happened, nothing
        more: delivery is the worker's business and never reported back.
        """
        await self.enqueue_raw(encode(job))
        logger.debug("job_enqueued", queue=self.queue_key, **job.describe())

    async def dead_letter(self, body: Union[bytes, str], reason: str):
        """Park a dropped body for inspection. No-op unless a key is configured."""
        if not self.dead_letter_key:
            return
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        record = {
            "reason": reason,
            "body": body,
            "failed_at": datetime.now(timezone.utc).isoformat(),
        }
        await self.enqueue_raw(json.dumps(record, ensure_ascii=False), key=self.dead_letter_key)
        logger.warning("job_dead_lettered", dlq=self.dead_letter_key, reason=reason)


# ──────────────────────────────────────────────────────────────
#  Redis List Implementation
# ──────────────────────────────────────────────────────────────

class RedisDispatchQueue(DispatchQueue):
    """
    Production queue backed by a Redis list.

    RPUSH appends at the tail, BLPOP pops from the head, so one producer's
    jobs come out in the order they went in.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        queue_key: str = Queues.JOBS,
        dead_letter_key: str = "",
        client=None,
    ):
        super().__init__(queue_key, dead_letter_key)
        self._redis_url = redis_url
        self._redis = client

    @retry(
        retry=retry_if_exception_type(QueueTransportError),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    async def connect(self):
        import redis.asyncio as aioredis
        from redis.exceptions import RedisError

        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                max_connections=50,
            )
        try:
            await self._redis.ping()
        except RedisError as e:
            logger.warning("redis_queue_connect_failed", error=str(e))
            raise QueueTransportError(f"Redis unreachable: {e}") from e
        logger.info("redis_queue_connected", url=self._redis_url.split("@")[-1])

    async def close(self):
        if self._redis:
            await self._redis.aclose()

    async def enqueue_raw(self, body: Union[bytes, str], key: str = None):
        from redis.exceptions import RedisError
        try:
            await self._redis.rpush(key or self.queue_key, body)
        except RedisError as e:
            raise QueueTransportError(f"RPUSH failed: {e}") from e

    async def dequeue_blocking(self, timeout: float) -> Optional[bytes]:
        from redis.exceptions import RedisError
        try:
            result = await self._redis.blpop([self.queue_key], timeout=timeout)
        except RedisError as e:
            raise QueueTransportError(f"BLPOP failed: {e}") from e
        if result is None:
            return None
        _key, body = result
        return body

    async def queue_length(self, key: str = None) -> int:
        from redis.exceptions import RedisError
        try:
            return await self._redis.llen(key or self.queue_key)
        except RedisError as e:
            raise QueueTransportError(f"LLEN failed: {e}") from e


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryDispatchQueue(DispatchQueue):
    """
    Development/test queue backed by asyncio primitives.
    Single-process only. Bodies are stored encoded, exactly as Redis would.
    """

    def __init__(self, queue_key: str = Queues.JOBS, dead_letter_key: str = ""):
        super().__init__(queue_key, dead_letter_key)
        self._lists: dict[str, asyncio.Queue] = {}

    def _get_list(self, name: str) -> asyncio.Queue:
        if name not in self._lists:
            self._lists[name] = asyncio.Queue()
        return self._lists[name]

    async def connect(self):
        logger.info("inmemory_queue_connected")

    async def close(self):
        pass

    async def enqueue_raw(self, body: Union[bytes, str], key: str = None):
        if isinstance(body, str):
            body = body.encode("utf-8")
        await self._get_list(key or self.queue_key).put(body)

    async def dequeue_blocking(self, timeout: float) -> Optional[bytes]:
        q = self._get_list(self.queue_key)
        if not q.empty():
            return q.get_nowait()
        getter = asyncio.ensure_future(q.get())
        try:
            await asyncio.wait({getter}, timeout=timeout)
        finally:
            if not getter.done():
                getter.cancel()
        # A getter cancelled after it was woken leaves the body on the list
        await asyncio.gather(getter, return_exceptions=True)
        if getter.cancelled():
            return None
        return getter.result()

    async def queue_length(self, key: str = None) -> int:
        return self._get_list(key or self.queue_key).qsize()

    def drain(self, key: str = None) -> list[bytes]:
        """Remove and return everything on a list (inspection helper)."""
        q = self._get_list(key or self.queue_key)
        items = []
        while not q.empty():
            items.append(q.get_nowait())
        return items


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_dispatch_queue(config: Union[QueueConfig, dict[str, Any]] = None) -> DispatchQueue:
    """Factory: create the appropriate queue backend."""
    if config is None:
        config = QueueConfig()
    elif isinstance(config, dict):
        config = QueueConfig(**{k: v for k, v in config.items() if k in QueueConfig.__dataclass_fields__})

    if config.backend == "redis":
        return RedisDispatchQueue(
            redis_url=config.redis_url,
            queue_key=config.queue_key,
            dead_letter_key=config.dead_letter_key,
        )
    return InMemoryDispatchQueue(
        queue_key=config.queue_key,
        dead_letter_key=config.dead_letter_key,
    )
