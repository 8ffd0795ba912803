from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class HoursSummary:
    student_id: str
    event_id: str
    total: Decimal
    computed: Decimal
    override: Optional[Decimal]
    open_sessions: int


@dataclass(frozen=True)
class DailySummary:
    event_id: str
    day: date
    total: int
    open: int
    flagged: int
    modified: int
    voided: int
