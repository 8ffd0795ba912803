from __future__ import annotations

import dataclasses
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from ..common.datetime_utils import now_local
from ..common.validators import require_non_empty
from ..core.constants import MAX_OVERRIDE_HOURS
from ..core.enums import ChangeKind
from ..core.exceptions import NotFound, ValidationError
from ..core.keys import LedgerKey
from ..history.recorder import ChangeHistoryRecorder
from ..ledger.repository import LedgerStore
from ..roster.repository import RosterGateway
from .model import Override

logger = logging.getLogger(__name__)


def parse_hours(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError("hours must be a number")
    try:
        hours = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("hours must be a number") from exc
    if not hours.is_finite() or hours < 0 or hours > MAX_OVERRIDE_HOURS:
        raise ValidationError(f"hours must be between 0 and {MAX_OVERRIDE_HOURS}")
    return hours.quantize(Decimal("0.01"))


class OverrideService:
    """Administrator totals that replace (never add to) computed hours."""

    def __init__(
        self,
        store: LedgerStore,
        roster: RosterGateway,
        history: ChangeHistoryRecorder,
        *,
        clock: Callable[[], Any] = now_local,
    ):
        self._store = store
        self._roster = roster
        self._history = history
        self._clock = clock

    def set_override(self, student_id: str, event_id: str, hours: Any, actor: str, reason: str) -> Override:
        # Re-setting the current value is allowed and still recorded.
        hours = parse_hours(hours)
        reason = require_non_empty(reason, "reason")
        if not self._roster.student_exists(student_id):
            raise NotFound(f"Student {student_id} not found")

        with self._store.transaction(LedgerKey(student_id, event_id)) as tx:
            prior = tx.get_override()
            override = Override(
                student_id=student_id,
                event_id=event_id,
                hours=hours,
                reason=reason,
                set_by=actor,
                set_at=self._clock(),
                active=True,
            )
            tx.save_override(override)
            self._history.record(
                tx,
                actor=actor,
                change_kind=ChangeKind.OVERRIDE_SET,
                before=prior,
                after=override,
                reason=reason,
            )

        logger.info("Override for %s set to %s hours by %s", override.key, hours, actor)
        return override

    def clear_override(self, student_id: str, event_id: str, actor: str, reason: str) -> Override:
        reason = require_non_empty(reason, "reason")

        with self._store.transaction(LedgerKey(student_id, event_id)) as tx:
            prior = tx.get_override()
            if prior is None or not prior.active:
                raise NotFound(f"No active override for {tx.key}")
            cleared = dataclasses.replace(prior, active=False, reason=reason, set_by=actor, set_at=self._clock())
            tx.save_override(cleared)
            self._history.record(
                tx,
                actor=actor,
                change_kind=ChangeKind.OVERRIDE_CLEAR,
                before=prior,
                after=cleared,
                reason=reason,
            )

        logger.info("Override for %s cleared by %s", cleared.key, actor)
        return cleared
