from __future__ import annotations

from typing import Optional

from .model import Activity, ActivityWindow
from .repository import RosterGateway


class InMemoryRosterRepository(RosterGateway):
    """Roster kept in process memory (local runs and tests)."""

    def __init__(self):
        self._students: set[str] = set()
        self._activities: dict[tuple[str, str], Activity] = {}
        self._active: dict[str, str] = {}

    def add_student(self, student_id: str) -> None:
        self._students.add(student_id)

    def add_activity(self, activity: Activity, *, active: bool = False) -> None:
        self._activities[(activity.event_id, activity.activity_id)] = activity
        if active or activity.event_id not in self._active:
            self._active[activity.event_id] = activity.activity_id

    def set_active_activity(self, event_id: str, activity_id: Optional[str]) -> None:
        if activity_id is None:
            self._active.pop(event_id, None)
        else:
            self._active[event_id] = activity_id

    def get_active_activity(self, event_id: str) -> Optional[str]:
        return self._active.get(event_id)

    def get_activity_default_window(self, event_id: str, activity_id: str) -> Optional[ActivityWindow]:
        activity = self._activities.get((event_id, activity_id))
        return activity.window if activity else None

    def student_exists(self, student_id: str) -> bool:
        return student_id in self._students
