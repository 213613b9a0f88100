from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional


class Clock:
    """Current date and time in the business's fixed UTC offset.

    ``now`` may be replaced with any callable returning an aware datetime,
    which is how tests pin the time.
    """

    def __init__(self, utc_offset_hours: int = -3, now: Optional[Callable[[], datetime]] = None) -> None:
        self.tz = timezone(timedelta(hours=utc_offset_hours))
        self._now = now or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        current = self._now()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def day_of_week(self) -> int:
        """0 = Monday ... 6 = Sunday."""
        return self.today().weekday()

    def at(self, day: date, moment: time) -> datetime:
        """Aware datetime for a local wall-clock time on ``day``."""
        return datetime.combine(day, moment, tzinfo=self.tz)
