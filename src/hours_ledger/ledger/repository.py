from __future__ import annotations

from datetime import date
from typing import ContextManager, Optional, Protocol, Sequence

from ..core.keys import LedgerKey
from ..history.model import HistoryCursor, HistoryRecord
from ..manual.model import ManualEntry
from ..overrides.model import Override
from ..sessions.model import Session
from .unit_of_work import LedgerTransaction


class LedgerStore(Protocol):
    """Persistence contract of the ledger.

    ``transaction(key)`` is the per-(student, event) serialization boundary:
    everything written through the yielded unit of work commits together or
    not at all. All other methods are committed-state reads.
    """

    def transaction(self, key: LedgerKey) -> ContextManager[LedgerTransaction]:
        raise NotImplementedError

    def list_sessions(self, key: LedgerKey) -> Sequence[Session]:
        raise NotImplementedError

    def list_manual_entries(self, key: LedgerKey) -> Sequence[ManualEntry]:
        raise NotImplementedError

    def get_override(self, key: LedgerKey) -> Optional[Override]:
        raise NotImplementedError

    def list_history(
        self,
        key: LedgerKey,
        *,
        before: Optional[HistoryCursor] = None,
        limit: int = 50,
    ) -> Sequence[HistoryRecord]:
        """Newest first, strictly after ``before`` in that order."""

        raise NotImplementedError

    def find_session(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def find_manual_entry(self, entry_id: str) -> Optional[ManualEntry]:
        raise NotImplementedError

    def list_open_sessions(self, event_id: str) -> Sequence[Session]:
        raise NotImplementedError

    def list_sessions_for_event(self, event_id: str, *, day: date) -> Sequence[Session]:
        raise NotImplementedError

    def list_manual_entries_for_event(self, event_id: str, *, day: date) -> Sequence[ManualEntry]:
        raise NotImplementedError

    def activity_in_use(self, event_id: str, activity_id: str) -> bool:
        raise NotImplementedError
