from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterator, Mapping, Optional, Union

from ..common.validators import require_min_length
from ..core.constants import MIN_VOID_REASON_LENGTH
from ..core.enums import ChangeKind, EntryKind
from ..core.exceptions import AlreadyVoided, NotFound, ValidationError
from ..history.model import HistoryPage, HistoryRecord
from ..history.recorder import ChangeHistoryRecorder
from ..hours.aggregator import HoursAggregator
from ..hours.model import DailySummary, HoursSummary
from ..manual.model import ManualEntry
from ..manual.service import ManualEntryValidator
from ..overrides.model import Override
from ..overrides.service import OverrideService
from ..sessions.model import Session, SessionOutcome
from ..sessions.service import SessionTracker
from .repository import LedgerStore

logger = logging.getLogger(__name__)

Entry = Union[Session, ManualEntry]


def parse_entry_kind(value: Union[str, EntryKind]) -> EntryKind:
    try:
        return EntryKind(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown entry kind: {value!r}") from exc


class LedgerService:
    """Single entry point for the ledger operations.

    Mutations go through the component services; void and restore live here
    because they apply to sessions and manual entries alike.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        sessions: SessionTracker,
        manual: ManualEntryValidator,
        overrides: OverrideService,
        hours: HoursAggregator,
        history: ChangeHistoryRecorder,
    ):
        self._store = store
        self._sessions = sessions
        self._manual = manual
        self._overrides = overrides
        self._hours = hours
        self._history = history

    # Scans and sessions
    def scan(
        self,
        token: str,
        scan_time: datetime,
        *,
        activity_id: Optional[str] = None,
        actor: str = "scanner",
    ) -> SessionOutcome:
        return self._sessions.record_scan(token, scan_time, activity_id=activity_id, actor=actor)

    def close_session(
        self, student_id: str, event_id: str, check_out_time: datetime, *, actor: str, reason: str
    ) -> Session:
        return self._sessions.close_session(student_id, event_id, check_out_time, actor=actor, reason=reason)

    def force_close_all(
        self,
        event_id: str,
        *,
        actor: str,
        reason: Optional[str] = None,
        checkout_times: Optional[Mapping[str, datetime]] = None,
    ) -> list[Session]:
        return self._sessions.force_close_all(event_id, actor=actor, reason=reason, checkout_times=checkout_times)

    def list_checked_in(self, event_id: str) -> list[Session]:
        return self._sessions.list_checked_in(event_id)

    # Manual entries
    def submit_manual_entry(
        self,
        student_id: str,
        event_id: str,
        activity_id: str,
        start_time: Optional[datetime],
        end_time: Optional[datetime],
        reason: Optional[str],
        actor: str,
        existing: Optional[str] = None,
    ) -> ManualEntry:
        return self._manual.submit(
            student_id, event_id, activity_id, start_time, end_time, reason, actor, existing=existing
        )

    def default_window(self, event_id: str, activity_id: str, on_date: date) -> tuple[datetime, datetime]:
        return self._manual.default_window(event_id, activity_id, on_date)

    # Overrides
    def set_override(self, student_id: str, event_id: str, hours: Any, actor: str, reason: str) -> Override:
        return self._overrides.set_override(student_id, event_id, hours, actor, reason)

    def clear_override(self, student_id: str, event_id: str, actor: str, reason: str) -> Override:
        return self._overrides.clear_override(student_id, event_id, actor, reason)

    # Reads
    def get_hours(self, student_id: str, event_id: str) -> Decimal:
        return self._hours.compute_hours(student_id, event_id)

    def get_summary(self, student_id: str, event_id: str) -> HoursSummary:
        return self._hours.summarize(student_id, event_id)

    def daily_summary(self, event_id: str, day: date) -> DailySummary:
        return self._hours.daily_summary(event_id, day)

    def get_history(
        self,
        student_id: str,
        event_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> HistoryPage:
        return self._history.list_history(student_id, event_id, cursor, limit)

    def iter_history(self, student_id: str, event_id: str, *, page_size: Optional[int] = None) -> Iterator[HistoryRecord]:
        return self._history.iter_history(student_id, event_id, page_size=page_size)

    def activity_in_use(self, event_id: str, activity_id: str) -> bool:
        """True once any session or manual entry references the activity."""
        return self._store.activity_in_use(event_id, activity_id)

    # Void / restore
    def _find(self, kind: EntryKind, entry_id: str) -> Entry:
        found: Optional[Entry]
        if kind == EntryKind.SESSION:
            found = self._store.find_session(entry_id)
        else:
            found = self._store.find_manual_entry(entry_id)
        if found is None:
            raise NotFound(f"{kind.value} {entry_id} not found")
        return found

    def _reload(self, tx, kind: EntryKind, entry_id: str) -> Entry:
        current = tx.get_session(entry_id) if kind == EntryKind.SESSION else tx.get_manual_entry(entry_id)
        if current is None:
            raise NotFound(f"{kind.value} {entry_id} not found")
        return current

    def _save(self, tx, entry: Entry) -> None:
        if isinstance(entry, Session):
            tx.save_session(entry)
        else:
            tx.save_manual_entry(entry)

    def void_entry(self, entry_kind: Union[str, EntryKind], entry_id: str, actor: str, reason: str) -> Entry:
        """Soft-delete a session or manual entry. Recorded times are kept."""

        kind = parse_entry_kind(entry_kind)
        reason = require_min_length(reason, "reason", MIN_VOID_REASON_LENGTH)
        located = self._find(kind, entry_id)

        with self._store.transaction(located.key) as tx:
            current = self._reload(tx, kind, entry_id)
            if current.voided:
                raise AlreadyVoided(f"{kind.value} {entry_id} is already voided")
            if isinstance(current, Session) and current.is_open:
                raise ValidationError("Open sessions cannot be voided; close them first")
            voided = dataclasses.replace(current, voided=True, void_reason=reason)
            self._save(tx, voided)
            self._history.record(
                tx,
                actor=actor,
                change_kind=ChangeKind.ENTRY_VOID,
                before=current,
                after=voided,
                reason=reason,
            )

        logger.info("Voided %s %s for %s", kind.value, entry_id, voided.key)
        return voided

    def restore_entry(
        self,
        entry_kind: Union[str, EntryKind],
        entry_id: str,
        actor: str,
        reason: Optional[str] = None,
    ) -> Entry:
        kind = parse_entry_kind(entry_kind)
        located = self._find(kind, entry_id)

        with self._store.transaction(located.key) as tx:
            current = self._reload(tx, kind, entry_id)
            if not current.voided:
                raise ValidationError(f"{kind.value} {entry_id} is not voided")
            restored = dataclasses.replace(current, voided=False, void_reason=None)
            self._save(tx, restored)
            self._history.record(
                tx,
                actor=actor,
                change_kind=ChangeKind.ENTRY_RESTORE,
                before=current,
                after=restored,
                reason=reason,
            )

        logger.info("Restored %s %s for %s", kind.value, entry_id, restored.key)
        return restored
