from __future__ import annotations

import dataclasses
import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional, Sequence

from ..core.keys import LedgerKey
from ..history.model import HistoryCursor, HistoryRecord
from ..manual.model import ManualEntry
from ..overrides.model import Override
from ..sessions.model import Session
from .locks import KeyedLockArena
from .repository import LedgerStore
from .unit_of_work import LedgerTransaction


class _MemoryTransaction(LedgerTransaction):
    """Stages writes; the store applies them in one step on commit."""

    def __init__(self, store: "InMemoryLedgerStore", key: LedgerKey):
        super().__init__(key)
        self._store = store
        self.sessions: dict[str, Session] = {}
        self.entries: dict[str, ManualEntry] = {}
        self.override: Optional[Override] = None
        self.history: list[HistoryRecord] = []

    def _sessions(self) -> list[Session]:
        merged = {s.session_id: s for s in self._store.list_sessions(self.key)}
        merged.update(self.sessions)
        return list(merged.values())

    def get_open_session(self) -> Optional[Session]:
        for s in self._sessions():
            if s.is_open:
                return s
        return None

    def get_latest_closed_session(self) -> Optional[Session]:
        closed = [s for s in self._sessions() if not s.is_open and not s.voided]
        if not closed:
            return None
        return max(closed, key=lambda s: s.check_out_time)

    def get_session(self, session_id: str) -> Optional[Session]:
        if session_id in self.sessions:
            return self.sessions[session_id]
        found = self._store.find_session(session_id)
        return found if found and found.key == self.key else None

    def get_manual_entry(self, entry_id: str) -> Optional[ManualEntry]:
        if entry_id in self.entries:
            return self.entries[entry_id]
        found = self._store.find_manual_entry(entry_id)
        return found if found and found.key == self.key else None

    def get_override(self) -> Optional[Override]:
        if self.override is not None:
            return self.override
        return self._store.get_override(self.key)

    def _write_session(self, session: Session) -> None:
        self.sessions[session.session_id] = session

    def _write_manual_entry(self, entry: ManualEntry) -> None:
        self.entries[entry.entry_id] = entry

    def _write_override(self, override: Override) -> None:
        self.override = override

    def _write_history(self, record: HistoryRecord) -> None:
        self.history.append(record)


class InMemoryLedgerStore(LedgerStore):
    """Process-local ledger store.

    Mutations serialize per key through a lock arena; the committed state is
    replaced under a short state lock so reads always see whole transactions.
    """

    def __init__(self, *, lock_timeout: Optional[float] = None):
        self._locks = KeyedLockArena()
        self._lock_timeout = lock_timeout
        self._state = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._entries: dict[str, ManualEntry] = {}
        self._overrides: dict[LedgerKey, Override] = {}
        self._history: list[HistoryRecord] = []
        self._sequence = 0

    @contextmanager
    def transaction(self, key: LedgerKey) -> Iterator[LedgerTransaction]:
        key = LedgerKey(*key)
        with self._locks.hold(key, timeout=self._lock_timeout):
            tx = _MemoryTransaction(self, key)
            yield tx
            tx.verify()
            self._commit(tx)

    def _commit(self, tx: _MemoryTransaction) -> None:
        with self._state:
            self._sessions.update(tx.sessions)
            self._entries.update(tx.entries)
            if tx.override is not None:
                self._overrides[tx.key] = tx.override
            for record in tx.history:
                self._sequence += 1
                self._history.append(dataclasses.replace(record, sequence=self._sequence))

    def list_sessions(self, key: LedgerKey) -> Sequence[Session]:
        with self._state:
            rows = [s for s in self._sessions.values() if s.key == key]
        return sorted(rows, key=lambda s: s.check_in_time)

    def list_manual_entries(self, key: LedgerKey) -> Sequence[ManualEntry]:
        with self._state:
            rows = [e for e in self._entries.values() if e.key == key]
        return sorted(rows, key=lambda e: e.start_time)

    def get_override(self, key: LedgerKey) -> Optional[Override]:
        with self._state:
            return self._overrides.get(LedgerKey(*key))

    def list_history(
        self,
        key: LedgerKey,
        *,
        before: Optional[HistoryCursor] = None,
        limit: int = 50,
    ) -> Sequence[HistoryRecord]:
        with self._state:
            rows = [
                r for r in self._history
                if r.student_id == key.student_id and r.event_id == key.event_id
            ]
        rows.sort(key=lambda r: r.sequence, reverse=True)
        if before is not None:
            rows = [r for r in rows if before.precedes(r)]
        return rows[: int(limit)]

    def find_session(self, session_id: str) -> Optional[Session]:
        with self._state:
            return self._sessions.get(session_id)

    def find_manual_entry(self, entry_id: str) -> Optional[ManualEntry]:
        with self._state:
            return self._entries.get(entry_id)

    def list_open_sessions(self, event_id: str) -> Sequence[Session]:
        with self._state:
            rows = [s for s in self._sessions.values() if s.event_id == event_id and s.is_open]
        return sorted(rows, key=lambda s: s.check_in_time)

    def list_sessions_for_event(self, event_id: str, *, day: date) -> Sequence[Session]:
        with self._state:
            rows = [
                s for s in self._sessions.values()
                if s.event_id == event_id and s.check_in_time.date() == day
            ]
        return sorted(rows, key=lambda s: s.check_in_time)

    def list_manual_entries_for_event(self, event_id: str, *, day: date) -> Sequence[ManualEntry]:
        with self._state:
            rows = [
                e for e in self._entries.values()
                if e.event_id == event_id and e.start_time.date() == day
            ]
        return sorted(rows, key=lambda e: e.start_time)

    def activity_in_use(self, event_id: str, activity_id: str) -> bool:
        with self._state:
            return any(
                s.event_id == event_id and s.activity_id == activity_id for s in self._sessions.values()
            ) or any(
                e.event_id == event_id and e.activity_id == activity_id for e in self._entries.values()
            )
