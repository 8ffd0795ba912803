from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..core.exceptions import LedgerIntegrityError
from ..core.keys import LedgerKey
from ..history.model import HistoryRecord
from ..manual.model import ManualEntry
from ..overrides.model import Override
from ..sessions.model import Session

logger = logging.getLogger(__name__)


class LedgerTransaction(ABC):
    """Unit of work bound to one ledger key.

    Counts entity writes and history appends; ``verify`` refuses to let a
    transaction commit unless the two match one-to-one.
    """

    def __init__(self, key: LedgerKey):
        self.key = key
        self._mutations = 0
        self._history = 0

    # Reads (see committed state plus this transaction's own writes)
    @abstractmethod
    def get_open_session(self) -> Optional[Session]:
        raise NotImplementedError

    @abstractmethod
    def get_latest_closed_session(self) -> Optional[Session]:
        """Most recent non-voided closed session; it gates out-of-order scans."""
        raise NotImplementedError

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    @abstractmethod
    def get_manual_entry(self, entry_id: str) -> Optional[ManualEntry]:
        raise NotImplementedError

    @abstractmethod
    def get_override(self) -> Optional[Override]:
        raise NotImplementedError

    # Writes
    def save_session(self, session: Session) -> None:
        self._check_key(session.key)
        self._write_session(session)
        self._mutations += 1

    def save_manual_entry(self, entry: ManualEntry) -> None:
        self._check_key(entry.key)
        self._write_manual_entry(entry)
        self._mutations += 1

    def save_override(self, override: Override) -> None:
        self._check_key(override.key)
        self._write_override(override)
        self._mutations += 1

    def append_history(self, record: HistoryRecord) -> None:
        self._check_key(LedgerKey(record.student_id, record.event_id))
        self._write_history(record)
        self._history += 1

    def verify(self) -> None:
        if self._mutations != self._history:
            logger.error(
                "Refusing to commit %s: %d entity writes vs %d history records",
                self.key,
                self._mutations,
                self._history,
            )
            raise LedgerIntegrityError(
                f"Every mutation needs exactly one history record "
                f"({self._mutations} writes, {self._history} records)"
            )

    def _check_key(self, key: LedgerKey) -> None:
        if key != self.key:
            raise LedgerIntegrityError(f"Write for {key} inside transaction for {self.key}")

    @abstractmethod
    def _write_session(self, session: Session) -> None:
        raise NotImplementedError

    @abstractmethod
    def _write_manual_entry(self, entry: ManualEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def _write_override(self, override: Override) -> None:
        raise NotImplementedError

    @abstractmethod
    def _write_history(self, record: HistoryRecord) -> None:
        raise NotImplementedError
