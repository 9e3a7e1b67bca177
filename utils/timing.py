"""
Cancellable sleeps for long-running loops.

Every loop in the worker process receives the same asyncio.Event; waiting
on it instead of asyncio.sleep() lets shutdown interrupt a 5-minute poll
immediately.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone


async def sleep_or_stop(stop: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`. Returns True if the stop event fired first."""
    if stop.is_set():
        return True
    if seconds <= 0:
        return False
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


async def sleep_until(stop: asyncio.Event, when: datetime) -> bool:
    """Sleep until a wall-clock instant, or until stopped."""
    delay = (when - datetime.now(timezone.utc)).total_seconds()
    return await sleep_or_stop(stop, delay)
