from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..core.constants import DEFAULT_FLAG_TOLERANCE_MINUTES
from ..core.enums import SessionFlag
from ..roster.model import ActivityWindow


@dataclass(frozen=True)
class ScanFlagPolicy:
    """Review flags for scans far outside the activity's default window."""

    tolerance_minutes: int = DEFAULT_FLAG_TOLERANCE_MINUTES

    @property
    def _tolerance(self) -> timedelta:
        return timedelta(minutes=self.tolerance_minutes)

    def for_check_in(self, check_in: datetime, window: Optional[ActivityWindow]) -> tuple[str, ...]:
        if not window:
            return ()
        typical = datetime.combine(check_in.date(), window.start)
        if check_in < typical - self._tolerance:
            return (SessionFlag.EARLY_ARRIVAL.value,)
        return ()

    def for_check_out(self, check_out: datetime, window: Optional[ActivityWindow]) -> tuple[str, ...]:
        if not window:
            return ()
        typical = datetime.combine(check_out.date(), window.end)
        if check_out > typical + self._tolerance:
            return (SessionFlag.LATE_STAY.value,)
        return ()


def merge_flags(existing: tuple[str, ...], *extra: str) -> tuple[str, ...]:
    out = list(existing)
    for flag in extra:
        if flag not in out:
            out.append(flag)
    return tuple(out)
