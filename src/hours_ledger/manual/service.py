from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Optional

from ..common.datetime_utils import now_local, to_local_naive
from ..common.ids import new_id
from ..common.validators import require_non_empty, require_present
from ..core.enums import ChangeKind
from ..core.exceptions import EntryVoided, InvalidRange, NoChangesDetected, NotFound
from ..core.keys import LedgerKey
from ..history.recorder import ChangeHistoryRecorder
from ..ledger.repository import LedgerStore
from ..roster.repository import RosterGateway
from .model import ManualEntry

logger = logging.getLogger(__name__)


class ManualEntryValidator:
    """Accepts administrator time ranges and turns them into ledger entries.

    The server never infers times: ``start_time``/``end_time`` must be in the
    request. ``default_window`` only exists so forms can be pre-filled.
    """

    def __init__(
        self,
        store: LedgerStore,
        roster: RosterGateway,
        history: ChangeHistoryRecorder,
        *,
        clock: Callable[[], Any] = now_local,
        id_factory: Callable[[], str] = new_id,
    ):
        self._store = store
        self._roster = roster
        self._history = history
        self._clock = clock
        self._new_id = id_factory

    def default_window(self, event_id: str, activity_id: str, on_date: date) -> tuple[datetime, datetime]:
        window = self._roster.get_activity_default_window(event_id, activity_id)
        if window is None:
            raise NotFound(f"Activity {activity_id} not found for event {event_id}")
        return window.on(on_date)

    def submit(
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
        """Create a manual entry, or edit ``existing`` (an entry id).

        An edit that keeps start, end and activity unchanged is rejected with
        NoChangesDetected even if the reason text differs.
        """

        activity_id = require_non_empty(activity_id, "activity_id")
        start_time = require_present(start_time, "start_time")
        end_time = require_present(end_time, "end_time")
        start_time, end_time = to_local_naive(start_time), to_local_naive(end_time)
        reason = require_non_empty(reason, "reason")

        if end_time <= start_time:
            raise InvalidRange("End time must be after start time")

        if not self._roster.student_exists(student_id):
            raise NotFound(f"Student {student_id} not found")
        if self._roster.get_activity_default_window(event_id, activity_id) is None:
            raise NotFound(f"Activity {activity_id} not found for event {event_id}")

        with self._store.transaction(LedgerKey(student_id, event_id)) as tx:
            prior: Optional[ManualEntry] = None
            if existing:
                prior = tx.get_manual_entry(existing)
                if prior is None:
                    raise NotFound(f"Manual entry {existing} not found")
                if prior.voided:
                    raise EntryVoided("Voided entries cannot be edited; restore it first")
                if prior.same_range(activity_id=activity_id, start_time=start_time, end_time=end_time):
                    raise NoChangesDetected("No changes detected")

            entry = ManualEntry(
                entry_id=prior.entry_id if prior else self._new_id(),
                student_id=student_id,
                event_id=event_id,
                activity_id=activity_id,
                start_time=start_time,
                end_time=end_time,
                reason=reason,
                entered_by=actor,
                entered_at=self._clock(),
            )
            tx.save_manual_entry(entry)
            self._history.record(
                tx,
                actor=actor,
                change_kind=ChangeKind.MANUAL_ENTRY_EDIT if prior else ChangeKind.MANUAL_ENTRY_CREATE,
                before=prior,
                after=entry,
                reason=reason,
            )

        logger.info(
            "%s manual entry %s for %s (%s - %s)",
            "Edited" if prior else "Created",
            entry.entry_id,
            entry.key,
            start_time.isoformat(),
            end_time.isoformat(),
        )
        return entry
