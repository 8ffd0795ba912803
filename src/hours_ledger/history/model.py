from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..core.enums import ChangeKind
from ..core.exceptions import InvalidFormat


@dataclass(frozen=True)
class HistoryRecord:
    """One immutable audit entry. ``before``/``after`` are entity snapshots."""

    record_id: str
    student_id: str
    event_id: str
    recorded_at: datetime
    actor: str
    change_kind: ChangeKind
    before: Optional[dict]
    after: Optional[dict]
    reason: Optional[str] = None
    description: str = ""
    sequence: Optional[int] = None


@dataclass(frozen=True)
class HistoryCursor:
    """Position in a newest-first history listing (exclusive).

    Ordering uses the commit sequence only; ``recorded_at`` is wall-clock time
    and may step backwards.
    """

    sequence: int

    def encode(self) -> str:
        return str(self.sequence)

    @classmethod
    def decode(cls, value: str) -> "HistoryCursor":
        if not (value.isascii() and value.isdigit()) or int(value) <= 0:
            raise InvalidFormat(f"Invalid history cursor: {value!r}")
        return cls(sequence=int(value))

    @classmethod
    def after(cls, record: HistoryRecord) -> "HistoryCursor":
        return cls(sequence=int(record.sequence or 0))

    def precedes(self, record: HistoryRecord) -> bool:
        """True when ``record`` comes after this cursor in newest-first order."""
        return (record.sequence or 0) < self.sequence


@dataclass(frozen=True)
class HistoryPage:
    records: list[HistoryRecord]
    next_cursor: Optional[str] = None


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def snapshot(entity: Any) -> Optional[dict]:
    """JSON-safe copy of an entity's state (None stays None)."""
    if entity is None:
        return None
    return {f.name: _plain(getattr(entity, f.name)) for f in dataclasses.fields(entity)}
