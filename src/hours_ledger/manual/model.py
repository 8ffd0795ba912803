from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..core.enums import EntrySource
from ..core.keys import LedgerKey


@dataclass(frozen=True)
class ManualEntry:
    """Administrator-authored time range standing in for a scan pair."""

    entry_id: str
    student_id: str
    event_id: str
    activity_id: str
    start_time: datetime
    end_time: datetime
    reason: str
    entered_by: str
    entered_at: datetime
    voided: bool = False
    void_reason: Optional[str] = None
    source: EntrySource = EntrySource.MANUAL

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.student_id, self.event_id)

    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def same_range(self, *, activity_id: str, start_time: datetime, end_time: datetime) -> bool:
        return (
            self.activity_id == activity_id
            and self.start_time == start_time
            and self.end_time == end_time
        )
