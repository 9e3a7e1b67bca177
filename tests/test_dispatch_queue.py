"""
Tests for the dispatch queue backends and the producer helpers.

Covers:
  - InMemoryDispatchQueue: FIFO, blocking pop timeout, dead letters
  - RedisDispatchQueue: RPUSH/BLPOP/LLEN calls, RedisError mapping (mocked client)
  - create_dispatch_queue factory
  - EmailJobs producer: job shape and metrics
"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config.settings import QueueConfig
from job_queue.dispatch_queue import (
    InMemoryDispatchQueue, Queues, RedisDispatchQueue, create_dispatch_queue,
)
from job_queue.errors import QueueTransportError
from models.jobs import EmailType, Job, RecapPayload, RegisterPayload, decode, encode
from models.schemas import DigestType


def _job(username: str) -> Job:
    return Job.email(EmailType.WEEKLY_RECAP, RecapPayload(email=f"{username}@x.com", username=username))


# ──────────────────────────────────────────────────────────────
#  In-memory backend
# ──────────────────────────────────────────────────────────────

class TestInMemoryDispatchQueue:
    @pytest.mark.asyncio
    async def test_fifo_order(self, queue):
        for name in ("a", "b", "c"):
            await queue.enqueue(_job(name))

        popped = [decode(await queue.dequeue_blocking(1.0)) for _ in range(3)]
        assert [j.email_job().payload().username for j in popped] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_pop_times_out_with_none(self, queue):
        assert await queue.dequeue_blocking(0.05) is None

    @pytest.mark.asyncio
    async def test_pop_wakes_on_push(self, queue):
        pop = asyncio.create_task(queue.dequeue_blocking(2.0))
        await asyncio.sleep(0.01)
        await queue.enqueue(_job("late"))
        body = await pop
        assert decode(body).email_job().payload().username == "late"

    @pytest.mark.asyncio
    async def test_timed_out_pop_leaves_later_push_on_list(self, queue):
        assert await queue.dequeue_blocking(0.01) is None
        await queue.enqueue(_job("after"))

        assert await queue.queue_length() == 1
        body = await queue.dequeue_blocking(0.5)
        assert decode(body).email_job().payload().username == "after"

    @pytest.mark.asyncio
    async def test_cancelled_pop_does_not_swallow_push(self, queue):
        pop = asyncio.create_task(queue.dequeue_blocking(5.0))
        await asyncio.sleep(0.01)
        pop.cancel()
        await asyncio.gather(pop, return_exceptions=True)

        await queue.enqueue(_job("kept"))
        assert await queue.queue_length() == 1

    @pytest.mark.asyncio
    async def test_pop_takes_ready_body_without_waiting(self, queue):
        await queue.enqueue(_job("ready"))
        body = await queue.dequeue_blocking(0)
        assert decode(body).email_job().payload().username == "ready"

    @pytest.mark.asyncio
    async def test_bodies_stored_as_bytes(self, queue):
        job = _job("a")
        await queue.enqueue(job)
        assert await queue.dequeue_blocking(1.0) == encode(job)

    @pytest.mark.asyncio
    async def test_queue_length(self, queue):
        assert await queue.queue_length() == 0
        await queue.enqueue(_job("a"))
        await queue.enqueue(_job("b"))
        assert await queue.queue_length() == 2

    @pytest.mark.asyncio
    async def test_dead_letter_record(self, queue):
        await queue.dead_letter(b"{broken", "malformed: not JSON")

        assert await queue.queue_length() == 0
        [raw] = queue.drain("jobs:dead")
        record = json.loads(raw)
        assert record["reason"] == "malformed: not JSON"
        assert record["body"] == "{broken"
        assert "failed_at" in record

    @pytest.mark.asyncio
    async def test_dead_letter_disabled_without_key(self):
        q = InMemoryDispatchQueue()
        await q.dead_letter(b"{broken", "malformed")
        assert await q.queue_length(Queues.DEAD) == 0


# ──────────────────────────────────────────────────────────────
#  Redis backend (mocked client)
# ──────────────────────────────────────────────────────────────

class TestRedisDispatchQueue:
    @pytest.fixture
    def client(self):
        return AsyncMock()

    @pytest.fixture
    def redis_queue(self, client):
        return RedisDispatchQueue(queue_key="jobs", dead_letter_key="jobs:dead", client=client)

    @pytest.mark.asyncio
    async def test_connect_pings(self, redis_queue, client):
        await redis_queue.connect()
        client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enqueue_rpushes_encoded_job(self, redis_queue, client):
        job = _job("a")
        await redis_queue.enqueue(job)
        client.rpush.assert_awaited_once_with("jobs", encode(job))

    @pytest.mark.asyncio
    async def test_dequeue_blpops_head(self, redis_queue, client):
        body = encode(_job("a"))
        client.blpop.return_value = (b"jobs", body)

        assert await redis_queue.dequeue_blocking(5.0) == body
        client.blpop.assert_awaited_once_with(["jobs"], timeout=5.0)

    @pytest.mark.asyncio
    async def test_dequeue_timeout(self, redis_queue, client):
        client.blpop.return_value = None
        assert await redis_queue.dequeue_blocking(0.1) is None

    @pytest.mark.asyncio
    async def test_push_error_maps_to_transport_error(self, redis_queue, client):
        client.rpush.side_effect = RedisConnectionError("refused")
        with pytest.raises(QueueTransportError):
            await redis_queue.enqueue(_job("a"))

    @pytest.mark.asyncio
    async def test_pop_error_maps_to_transport_error(self, redis_queue, client):
        client.blpop.side_effect = RedisConnectionError("refused")
        with pytest.raises(QueueTransportError):
            await redis_queue.dequeue_blocking(1.0)

    @pytest.mark.asyncio
    async def test_queue_length_uses_llen(self, redis_queue, client):
        client.llen.return_value = 3
        assert await redis_queue.queue_length() == 3
        client.llen.assert_awaited_once_with("jobs")

    @pytest.mark.asyncio
    async def test_dead_letter_goes_to_dead_list(self, redis_queue, client):
        await redis_queue.dead_letter(b"{broken", "malformed")
        key, record = client.rpush.await_args.args
        assert key == "jobs:dead"
        assert json.loads(record)["body"] == "{broken"

    @pytest.mark.asyncio
    async def test_close(self, redis_queue, client):
        await redis_queue.close()
        client.aclose.assert_awaited_once()


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

class TestQueueFactory:
    def test_default_is_memory(self):
        assert isinstance(create_dispatch_queue(), InMemoryDispatchQueue)

    def test_redis_from_config(self):
        q = create_dispatch_queue(QueueConfig(backend="redis", redis_url="redis://cache:6379/2",
                                              dead_letter_key="jobs:dead"))
        assert isinstance(q, RedisDispatchQueue)
        assert q.queue_key == "jobs"
        assert q.dead_letter_key == "jobs:dead"

    def test_dict_config_ignores_unknown_keys(self):
        q = create_dispatch_queue({"backend": "memory", "queue_key": "other", "stream_prefix": "x"})
        assert isinstance(q, InMemoryDispatchQueue)
        assert q.queue_key == "other"


# ──────────────────────────────────────────────────────────────
#  Producer
# ──────────────────────────────────────────────────────────────

class TestEmailJobs:
    @pytest.mark.asyncio
    async def test_register_email(self, email_jobs, queue, obs):
        job = await email_jobs.send_register_email("a@x.com", "ann", "tok")

        assert decode(await queue.dequeue_blocking(1.0)) == job
        assert job.email_job().email_type is EmailType.REGISTRATION
        assert job.email_job().payload() == RegisterPayload(email="a@x.com", username="ann", token="tok")
        assert obs.metrics.enqueued["Registration"] == 1

    @pytest.mark.asyncio
    async def test_password_reset_and_email_change(self, email_jobs, queue):
        await email_jobs.send_password_reset_email("a@x.com", "ann", "t1")
        await email_jobs.send_email_change_email("new@x.com", "ann", "t2")

        first = decode(await queue.dequeue_blocking(1.0)).email_job()
        second = decode(await queue.dequeue_blocking(1.0)).email_job()
        assert first.email_type is EmailType.RESET_PASSWORD
        assert second.email_type is EmailType.EMAIL_CHANGE
        assert second.payload().email == "new@x.com"

    @pytest.mark.asyncio
    async def test_daily_usage_recap(self, email_jobs, queue):
        await email_jobs.send_daily_usage_recap("ops@x.com", "2026-10-18", "12 users active")
        job_email = decode(await queue.dequeue_blocking(1.0)).email_job()
        assert job_email.email_type is EmailType.DAILY_USAGE_RECAP
        assert job_email.payload().usage_summary == "12 users active"

    @pytest.mark.asyncio
    async def test_recap_uses_digest_email_type(self, email_jobs, queue):
        await email_jobs.enqueue_recap(DigestType.YEARLY, "a@x.com", "ann")
        job_email = decode(await queue.dequeue_blocking(1.0)).email_job()
        assert job_email.email_type is EmailType.YEARLY_RECAP

    @pytest.mark.asyncio
    async def test_enqueue_failure_propagates(self, obs):
        from job_queue.producer import EmailJobs

        client = AsyncMock()
        client.rpush.side_effect = RedisConnectionError("down")
        jobs = EmailJobs(RedisDispatchQueue(client=client), observability=obs)

        with pytest.raises(QueueTransportError):
            await jobs.send_register_email("a@x.com", "ann", "tok")
        assert obs.metrics.enqueue_failed["Registration"] == 1
        assert obs.metrics.enqueued["Registration"] == 0
