from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time


@dataclass(frozen=True)
class ActivityWindow:
    """Default working window of an activity (time of day)."""

    start: time
    end: time

    def on(self, day: date) -> tuple[datetime, datetime]:
        return datetime.combine(day, self.start), datetime.combine(day, self.end)


@dataclass(frozen=True)
class Activity:
    activity_id: str
    event_id: str
    name: str
    window: ActivityWindow
