from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..core.keys import LedgerKey


@dataclass(frozen=True)
class Override:
    """Administrator-set total that replaces computed hours while active."""

    student_id: str
    event_id: str
    hours: Decimal
    reason: str
    set_by: str
    set_at: datetime
    active: bool = True

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.student_id, self.event_id)
