"""Bell schedule evaluation: which period is on now and which comes next.

Schedules come from the ``bellSchedule`` setting::

    {"enabled": true, "currentSchedule": "regular",
     "schedules": {"regular": [{"name": "Period 1", "start": "08:00", "end": "08:50"}, ...]}}

Periods are expected in start-time order, as the admin panel saves them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


def time_to_minutes(value: str) -> int:
    """``"13:05"`` → 785."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_minutes(minutes: int) -> str:
    """785 → ``"1:05 PM"``."""
    hours, mins = divmod(minutes, 60)
    ampm = "PM" if hours >= 12 else "AM"
    return f"{hours % 12 or 12}:{mins:02d} {ampm}"


@dataclass
class BellStatus:
    current: dict[str, Any] | None = None
    next: dict[str, Any] | None = None
    minutes_remaining: int | None = None  # in the current period
    minutes_until_next: int | None = None  # while passing between periods

    @property
    def current_label(self) -> str:
        return self.current["name"] if self.current else "Passing"

    @property
    def remaining_label(self) -> str:
        if self.current:
            return f"{self.minutes_remaining} min remaining"
        if self.next:
            return f"{self.minutes_until_next} min"
        return "End of day"

    @property
    def next_label(self) -> str:
        return self.next["name"] if self.next else "--"

    @property
    def next_time_label(self) -> str:
        return format_minutes(time_to_minutes(self.next["start"])) if self.next else "--"


def current_periods(schedule: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not schedule or not isinstance(schedule.get("schedules"), dict):
        return []
    name = schedule.get("currentSchedule") or "regular"
    periods = schedule["schedules"].get(name) or []
    return [p for p in periods if isinstance(p, dict) and p.get("start") and p.get("end")]


def bell_status(schedule: dict[str, Any] | None, now: datetime) -> BellStatus | None:
    """Evaluate *schedule* at *now*; None when the schedule is off or empty."""
    if not schedule or not schedule.get("enabled"):
        return None
    periods = current_periods(schedule)
    if not periods:
        return None

    minute = now.hour * 60 + now.minute
    for i, period in enumerate(periods):
        start = time_to_minutes(period["start"])
        end = time_to_minutes(period["end"])
        if start <= minute < end:
            following = periods[i + 1] if i + 1 < len(periods) else None
            return BellStatus(current=period, next=following, minutes_remaining=end - minute)
        if minute < start:
            return BellStatus(next=period, minutes_until_next=start - minute)
    return BellStatus()
