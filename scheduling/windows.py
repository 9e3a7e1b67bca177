"""
Trigger windows — when a recurring digest is due.

A window is a calendar predicate (month / day / weekday, any may be unset)
plus a start time and a width in minutes:

    weekly  = TriggerWindow(weekday=0, hour=9)          # Mondays 09:00–09:05
    monthly = TriggerWindow(day=1, hour=9)              # 1st of month 09:00–09:05
    yearly  = TriggerWindow(month=1, day=1, hour=9)     # 1 January 09:00–09:05

next_fire_time() lets a scanner sleep exactly until the next window opens
instead of hoping a coarse poll lands inside it.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config.settings import WindowConfig

# Four years plus a day covers a 29 February window
_MAX_SEARCH_DAYS = 366 * 4 + 1


@dataclass(frozen=True)
class TriggerWindow:
    hour: int
    minute: int = 0
    window_minutes: int = 5
    month: Optional[int] = None
    day: Optional[int] = None
    weekday: Optional[int] = None       # 0 = Monday … 6 = Sunday
    tz: str = "UTC"

    def __post_init__(self):
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour out of range: {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"minute out of range: {self.minute}")
        if self.window_minutes < 1 or self.minute + self.window_minutes > 60:
            raise ValueError("window must be at least one minute and end within the hour")
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValueError(f"month out of range: {self.month}")
        if self.day is not None and not 1 <= self.day <= 31:
            raise ValueError(f"day out of range: {self.day}")
        if self.weekday is not None and not 0 <= self.weekday <= 6:
            raise ValueError(f"weekday out of range: {self.weekday}")

    @classmethod
    def from_config(cls, config: WindowConfig, tz: str = "UTC") -> Optional[TriggerWindow]:
        if not config.enabled:
            return None
        return cls(
            hour=config.hour,
            minute=config.minute,
            window_minutes=config.window_minutes,
            month=config.month,
            day=config.day,
            weekday=config.weekday,
            tz=tz,
        )

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.tz)

    def _local(self, moment: datetime) -> datetime:
        # Naive datetimes are read as wall-clock time in the window's zone
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.zone)
        return moment.astimezone(self.zone)

    def _day_matches(self, d: date) -> bool:
        if self.month is not None and d.month != self.month:
            return False
        if self.day is not None and d.day != self.day:
            return False
        if self.weekday is not None and d.weekday() != self.weekday:
            return False
        return True

    def matches(self, now: datetime) -> bool:
        local = self._local(now)
        return (
            self._day_matches(local.date())
            and local.hour == self.hour
            and self.minute <= local.minute < self.minute + self.window_minutes
        )

    def window_start(self, now: datetime) -> Optional[datetime]:
        """Start of the window containing `now`, or None outside any window."""
        if not self.matches(now):
            return None
        return self._local(now).replace(minute=self.minute, second=0, microsecond=0)

    def window_key(self, now: datetime) -> Optional[str]:
        start = self.window_start(now)
        return start.strftime("%Y-%m-%dT%H:%M") if start else None

    def next_fire_time(self, after: datetime) -> datetime:
        """First window start strictly later than `after`."""
        local = self._local(after)
        start_time = time(self.hour, self.minute)
        for offset in range(_MAX_SEARCH_DAYS):
            d = local.date() + timedelta(days=offset)
            if not self._day_matches(d):
                continue
            candidate = datetime.combine(d, start_time, tzinfo=self.zone)
            if candidate > local:
                return candidate
        raise ValueError(f"Trigger window never fires: {self}")
