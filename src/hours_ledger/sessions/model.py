from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..core.enums import CheckOutMethod, EntrySource, ScanOutcomeKind
from ..core.keys import LedgerKey


@dataclass(frozen=True)
class Session:
    """Scan-derived check-in/check-out pair. Open while ``check_out_time`` is None."""

    session_id: str
    student_id: str
    event_id: str
    activity_id: str
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    checked_in_by: str = "scanner"
    checked_out_by: Optional[str] = None
    check_out_method: Optional[CheckOutMethod] = None
    flags: tuple[str, ...] = ()
    voided: bool = False
    void_reason: Optional[str] = None
    source: EntrySource = EntrySource.SCAN

    @property
    def key(self) -> LedgerKey:
        return LedgerKey(self.student_id, self.event_id)

    @property
    def is_open(self) -> bool:
        return self.check_out_time is None

    def duration(self) -> timedelta:
        if self.check_out_time is None:
            return timedelta(0)
        return self.check_out_time - self.check_in_time


@dataclass(frozen=True)
class SessionOutcome:
    kind: ScanOutcomeKind
    session: Optional[Session] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def checked_in(cls, session: Session) -> "SessionOutcome":
        return cls(kind=ScanOutcomeKind.CHECKED_IN, session=session)

    @classmethod
    def checked_out(cls, session: Session) -> "SessionOutcome":
        return cls(kind=ScanOutcomeKind.CHECKED_OUT, session=session)

    @classmethod
    def rejected(cls, reason: str, message: Optional[str] = None) -> "SessionOutcome":
        return cls(kind=ScanOutcomeKind.REJECTED, reason=reason, message=message)

    @property
    def accepted(self) -> bool:
        return self.kind != ScanOutcomeKind.REJECTED
