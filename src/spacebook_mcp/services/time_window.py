"""Buffered time windows and the overlap rule.

Windows are half-open: a booking ending at 10:00 and another starting at
10:00 do not collide. Buffers stretch a window but never past the booking
day, so the last possible end is midnight of the next day, shown as 24:00.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

_FORMAT = "%H:%M"


@dataclass(frozen=True)
class TimeWindow:
    date: dt.date
    start: dt.datetime
    end: dt.datetime

    @classmethod
    def of(cls, date: dt.date, start: dt.time, end: dt.time) -> TimeWindow:
        return cls(date, dt.datetime.combine(date, start), dt.datetime.combine(date, end))

    @classmethod
    def buffered(
        cls,
        date: dt.date,
        start: dt.time,
        end: dt.time,
        buffer_before_min: int = 0,
        buffer_after_min: int = 0,
    ) -> TimeWindow:
        return cls.of(date, start, end).with_buffers(buffer_before_min, buffer_after_min)

    @property
    def day_start(self) -> dt.datetime:
        return dt.datetime.combine(self.date, dt.time.min)

    @property
    def day_end(self) -> dt.datetime:
        return self.day_start + dt.timedelta(days=1)

    def with_buffers(self, buffer_before_min: int, buffer_after_min: int) -> TimeWindow:
        start = max(self.start - dt.timedelta(minutes=buffer_before_min), self.day_start)
        end = min(self.end + dt.timedelta(minutes=buffer_after_min), self.day_end)
        return TimeWindow(self.date, start, end)

    def overlaps(self, other: TimeWindow) -> bool:
        return self.start < other.end and other.start < self.end

    @property
    def formatted_start(self) -> str:
        return self.start.strftime(_FORMAT)

    @property
    def formatted_end(self) -> str:
        if self.end == self.day_end:
            return "24:00"
        return self.end.strftime(_FORMAT)

    def __str__(self) -> str:
        return f"{self.date.isoformat()} {self.formatted_start}-{self.formatted_end}"


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    return a.overlaps(b)
