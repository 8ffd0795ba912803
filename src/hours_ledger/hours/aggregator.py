from __future__ import annotations

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from ..core.constants import HOURS_PRECISION
from ..core.enums import CheckOutMethod
from ..core.keys import LedgerKey
from ..ledger.repository import LedgerStore
from ..manual.model import ManualEntry
from ..sessions.model import Session
from .model import DailySummary, HoursSummary

LedgerEntry = Union[Session, ManualEntry]

_MICROS_PER_HOUR = Decimal(3600 * 1_000_000)


def to_hours(duration: timedelta) -> Decimal:
    """Convert a duration to hours, rounded half-up to two decimals."""
    micros = Decimal(duration // timedelta(microseconds=1))
    return (micros / _MICROS_PER_HOUR).quantize(Decimal(HOURS_PRECISION), rounding=ROUND_HALF_UP)


def counted(entry: LedgerEntry) -> bool:
    if entry.voided:
        return False
    if isinstance(entry, Session):
        return not entry.is_open
    return True


def total_duration(entries: Iterable[LedgerEntry]) -> timedelta:
    return sum((e.duration() for e in entries if counted(e)), timedelta(0))


class HoursAggregator:
    """Folds scans, manual entries and overrides into hours. Read-only."""

    def __init__(self, store: LedgerStore):
        self._store = store

    def _computed(self, key: LedgerKey) -> tuple[Decimal, list[Session]]:
        sessions = list(self._store.list_sessions(key))
        entries = list(self._store.list_manual_entries(key))
        return to_hours(total_duration([*sessions, *entries])), sessions

    def compute_hours(self, student_id: str, event_id: str) -> Decimal:
        key = LedgerKey(student_id, event_id)
        override = self._store.get_override(key)
        if override is not None and override.active:
            return override.hours
        computed, _ = self._computed(key)
        return computed

    def summarize(self, student_id: str, event_id: str) -> HoursSummary:
        key = LedgerKey(student_id, event_id)
        override = self._store.get_override(key)
        computed, sessions = self._computed(key)
        active = override.hours if override is not None and override.active else None
        return HoursSummary(
            student_id=student_id,
            event_id=event_id,
            total=active if active is not None else computed,
            computed=computed,
            override=active,
            open_sessions=sum(1 for s in sessions if s.is_open and not s.voided),
        )

    def daily_summary(self, event_id: str, day: date) -> DailySummary:
        sessions = list(self._store.list_sessions_for_event(event_id, day=day))
        entries = list(self._store.list_manual_entries_for_event(event_id, day=day))
        forced = {CheckOutMethod.FORCED, CheckOutMethod.FORCED_BULK}
        return DailySummary(
            event_id=event_id,
            day=day,
            total=len(sessions) + len(entries),
            open=sum(1 for s in sessions if s.is_open),
            flagged=sum(1 for s in sessions if s.flags),
            # Manual entries are administrator edits by construction.
            modified=sum(1 for s in sessions if s.check_out_method in forced) + len(entries),
            voided=sum(1 for e in [*sessions, *entries] if e.voided),
        )
