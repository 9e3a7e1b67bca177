"""Tests for trigger windows and cancellable sleeps."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from config.settings import WindowConfig
from scheduling.windows import TriggerWindow
from utils.timing import sleep_or_stop, sleep_until

UTC = timezone.utc


class TestTriggerWindowMatches:
    weekly = TriggerWindow(weekday=0, hour=9, minute=0, window_minutes=5)

    def test_monday_inside_window(self):
        # 2026-10-19 is a Monday
        assert self.weekly.matches(datetime(2026, 10, 19, 9, 3, tzinfo=UTC))

    def test_monday_after_window(self):
        assert not self.weekly.matches(datetime(2026, 10, 19, 9, 6, tzinfo=UTC))

    def test_window_end_is_exclusive(self):
        assert not self.weekly.matches(datetime(2026, 10, 19, 9, 5, tzinfo=UTC))
        assert self.weekly.matches(datetime(2026, 10, 19, 9, 4, 59, tzinfo=UTC))

    def test_tuesday_same_time(self):
        assert not self.weekly.matches(datetime(2026, 10, 20, 9, 3, tzinfo=UTC))

    def test_monthly_first_of_month(self):
        monthly = TriggerWindow(day=1, hour=9)
        assert monthly.matches(datetime(2026, 11, 1, 9, 0, tzinfo=UTC))
        assert not monthly.matches(datetime(2026, 11, 2, 9, 0, tzinfo=UTC))

    def test_yearly_first_of_january(self):
        yearly = TriggerWindow(month=1, day=1, hour=9)
        assert yearly.matches(datetime(2027, 1, 1, 9, 2, tzinfo=UTC))
        assert not yearly.matches(datetime(2027, 2, 1, 9, 2, tzinfo=UTC))

    def test_other_timezone(self):
        berlin = TriggerWindow(weekday=0, hour=9, tz="Europe/Berlin")
        # 07:02 UTC is 09:02 in Berlin during CEST
        assert berlin.matches(datetime(2026, 10, 19, 7, 2, tzinfo=UTC))
        assert not berlin.matches(datetime(2026, 10, 19, 9, 2, tzinfo=UTC))

    def test_naive_time_is_wall_clock(self):
        assert self.weekly.matches(datetime(2026, 10, 19, 9, 1))

    def test_window_key(self):
        assert self.weekly.window_key(datetime(2026, 10, 19, 9, 3, 41, tzinfo=UTC)) == "2026-10-19T09:00"
        assert self.weekly.window_key(datetime(2026, 10, 19, 10, 0, tzinfo=UTC)) is None


class TestNextFireTime:
    def test_later_same_day(self):
        weekly = TriggerWindow(weekday=0, hour=9)
        nxt = weekly.next_fire_time(datetime(2026, 10, 19, 8, 0, tzinfo=UTC))
        assert nxt == datetime(2026, 10, 19, 9, 0, tzinfo=UTC)

    def test_strictly_after_window_start(self):
        weekly = TriggerWindow(weekday=0, hour=9)
        nxt = weekly.next_fire_time(datetime(2026, 10, 19, 9, 0, tzinfo=UTC))
        assert nxt == datetime(2026, 10, 26, 9, 0, tzinfo=UTC)

    def test_monthly_rolls_over(self):
        monthly = TriggerWindow(day=1, hour=9)
        nxt = monthly.next_fire_time(datetime(2026, 12, 15, tzinfo=UTC))
        assert nxt == datetime(2027, 1, 1, 9, 0, tzinfo=UTC)

    def test_day_missing_from_short_months(self):
        monthly = TriggerWindow(day=31, hour=9)
        nxt = monthly.next_fire_time(datetime(2026, 11, 1, tzinfo=UTC))
        assert nxt == datetime(2026, 12, 31, 9, 0, tzinfo=UTC)

    def test_leap_day(self):
        leap = TriggerWindow(month=2, day=29, hour=9)
        nxt = leap.next_fire_time(datetime(2026, 10, 18, tzinfo=UTC))
        assert nxt == datetime(2028, 2, 29, 9, 0, tzinfo=UTC)

    def test_impossible_window(self):
        never = TriggerWindow(month=2, day=30, hour=9)
        with pytest.raises(ValueError):
            never.next_fire_time(datetime(2026, 10, 18, tzinfo=UTC))

    def test_fire_time_matches(self):
        yearly = TriggerWindow(month=1, day=1, hour=9, minute=30)
        nxt = yearly.next_fire_time(datetime(2026, 10, 18, tzinfo=UTC))
        assert yearly.matches(nxt)


class TestTriggerWindowValidation:
    @pytest.mark.parametrize("kwargs", [
        {"hour": 24},
        {"hour": 9, "minute": 60},
        {"hour": 9, "window_minutes": 0},
        {"hour": 9, "minute": 58, "window_minutes": 5},
        {"hour": 9, "month": 13},
        {"hour": 9, "day": 0},
        {"hour": 9, "weekday": 7},
    ])
    def test_out_of_range(self, kwargs):
        with pytest.raises(ValueError):
            TriggerWindow(**kwargs)

    def test_from_config(self):
        window = TriggerWindow.from_config(WindowConfig(weekday=0, hour=7, minute=15), tz="Europe/Berlin")
        assert window == TriggerWindow(weekday=0, hour=7, minute=15, tz="Europe/Berlin")

    def test_disabled_config(self):
        assert TriggerWindow.from_config(WindowConfig(day=1, enabled=False)) is None


class TestCancellableSleep:
    @pytest.mark.asyncio
    async def test_times_out(self):
        assert await sleep_or_stop(asyncio.Event(), 0.01) is False

    @pytest.mark.asyncio
    async def test_already_stopped(self):
        stop = asyncio.Event()
        stop.set()
        assert await sleep_or_stop(stop, 60) is True

    @pytest.mark.asyncio
    async def test_stop_interrupts_long_sleep(self):
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.02, stop.set)
        assert await asyncio.wait_for(sleep_or_stop(stop, 60), timeout=1.0) is True

    @pytest.mark.asyncio
    async def test_sleep_until_past_instant(self):
        past = datetime.now(UTC) - timedelta(seconds=5)
        assert await sleep_until(asyncio.Event(), past) is False
