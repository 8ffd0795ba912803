from __future__ import annotations

from typing import NamedTuple


class LedgerKey(NamedTuple):
    """Serialization and filtering key of the ledger: one student at one event."""

    student_id: str
    event_id: str

    def __str__(self) -> str:
        return f"{self.student_id}@{self.event_id}"
