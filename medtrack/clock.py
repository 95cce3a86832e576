# medtrack/clock.py
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import UTC_OFFSET_MINUTES

# Schedule days follow this offset, never the host timezone.
LOCAL_TZ = timezone(timedelta(minutes=UTC_OFFSET_MINUTES))

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class Clock:
    def __init__(self, now_fn: Optional[Callable[[], datetime]] = None):
        self._now_fn = now_fn or utc_now

    def now(self) -> datetime:
        return self._now_fn().astimezone(LOCAL_TZ)

    def today(self) -> str:
        return self.now().strftime("%Y-%m-%d")

    def hhmm(self) -> str:
        return self.now().strftime("%H:%M")

    def days_back(self, n: int) -> str:
        return (self.now() - timedelta(days=n)).strftime("%Y-%m-%d")

class FrozenClock(Clock):
    """Clock pinned to a settable instant (naive values are read as local time)."""

    def __init__(self, at: datetime):
        self._at = self._aware(at)
        super().__init__(lambda: self._at)

    @staticmethod
    def _aware(at: datetime) -> datetime:
        if at.tzinfo is None:
            return at.replace(tzinfo=LOCAL_TZ)
        return at

    def set(self, at: datetime):
        self._at = self._aware(at)

    def advance(self, **kwargs):
        self._at = self._at + timedelta(**kwargs)
