from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Callable, Mapping, Optional

from ..common.datetime_utils import to_local_naive
from ..common.ids import new_id
from ..common.validators import require_non_empty
from ..core.constants import DEFAULT_BULK_CLOSE_REASON
from ..core.enums import ChangeKind, CheckOutMethod, SessionFlag
from ..core.exceptions import (
    ConflictError,
    DecodeError,
    InvalidRange,
    NegativeDurationError,
    NotFound,
    OutOfOrderScan,
)
from ..core.keys import LedgerKey
from ..history.recorder import ChangeHistoryRecorder
from ..identity import codec
from ..ledger.repository import LedgerStore
from ..ledger.unit_of_work import LedgerTransaction
from ..roster.repository import RosterGateway
from .flags import ScanFlagPolicy, merge_flags
from .model import Session, SessionOutcome

logger = logging.getLogger(__name__)


class SessionTracker:
    """Open/closed state machine of scan sessions, one per (student, event).

    NoOpenSession --scan--> Open --scan--> Closed. A scan while a session is
    open always closes it; there is never a second open session for a key.
    """

    def __init__(
        self,
        store: LedgerStore,
        roster: RosterGateway,
        history: ChangeHistoryRecorder,
        *,
        flag_policy: Optional[ScanFlagPolicy] = None,
        id_factory: Callable[[], str] = new_id,
    ):
        self._store = store
        self._roster = roster
        self._history = history
        self._flags = flag_policy or ScanFlagPolicy()
        self._new_id = id_factory

    def record_scan(
        self,
        token: str,
        scan_time: datetime,
        *,
        activity_id: Optional[str] = None,
        actor: str = "scanner",
    ) -> SessionOutcome:
        """Decode a badge token and apply the scan.

        Decode, lookup and conflict errors come back as a rejected outcome so
        the scanner can simply prompt for the next badge.
        """

        try:
            student_id, event_id = codec.decode(token)
            return self.apply_scan(student_id, event_id, scan_time, activity_id=activity_id, actor=actor)
        except (DecodeError, NotFound, ConflictError) as e:
            logger.warning("Scan ignored (%s): %s", e.code, e)
            return SessionOutcome.rejected(e.code, str(e))

    def apply_scan(
        self,
        student_id: str,
        event_id: str,
        scan_time: datetime,
        *,
        activity_id: Optional[str] = None,
        actor: str = "scanner",
    ) -> SessionOutcome:
        scan_time = to_local_naive(scan_time)
        if not self._roster.student_exists(student_id):
            raise NotFound(f"Student {student_id} not found")

        with self._store.transaction(LedgerKey(student_id, event_id)) as tx:
            open_session = tx.get_open_session()
            if open_session is None:
                session = self._check_in(tx, scan_time, activity_id=activity_id, actor=actor)
                return SessionOutcome.checked_in(session)

            if scan_time <= open_session.check_in_time:
                raise NegativeDurationError(
                    f"Scan at {scan_time.isoformat()} is not after check-in at "
                    f"{open_session.check_in_time.isoformat()}"
                )
            window = self._roster.get_activity_default_window(event_id, open_session.activity_id)
            session = self._close(
                tx,
                open_session,
                scan_time,
                actor=actor,
                method=CheckOutMethod.SCAN,
                extra_flags=self._flags.for_check_out(scan_time, window),
            )
            return SessionOutcome.checked_out(session)

    def _check_in(
        self,
        tx: LedgerTransaction,
        scan_time: datetime,
        *,
        activity_id: Optional[str],
        actor: str,
    ) -> Session:
        student_id, event_id = tx.key

        latest = tx.get_latest_closed_session()
        if latest is not None and scan_time <= latest.check_out_time:
            raise OutOfOrderScan(
                f"Scan at {scan_time.isoformat()} is not after the last check-out at "
                f"{latest.check_out_time.isoformat()}"
            )

        activity_id = activity_id or self._roster.get_active_activity(event_id)
        if not activity_id:
            raise NotFound(f"Event {event_id} has no active activity")
        window = self._roster.get_activity_default_window(event_id, activity_id)
        if window is None:
            raise NotFound(f"Activity {activity_id} not found for event {event_id}")

        session = Session(
            session_id=self._new_id(),
            student_id=student_id,
            event_id=event_id,
            activity_id=activity_id,
            check_in_time=scan_time,
            checked_in_by=actor,
            flags=self._flags.for_check_in(scan_time, window),
        )
        tx.save_session(session)
        self._history.record(
            tx,
            actor=actor,
            change_kind=ChangeKind.SESSION_OPEN,
            before=None,
            after=session,
        )
        logger.info("Checked in %s at %s (activity=%s)", tx.key, scan_time.isoformat(), activity_id)
        return session

    def _close(
        self,
        tx: LedgerTransaction,
        session: Session,
        check_out_time: datetime,
        *,
        actor: str,
        method: CheckOutMethod,
        extra_flags: tuple[str, ...] = (),
        reason: Optional[str] = None,
    ) -> Session:
        closed = dataclasses.replace(
            session,
            check_out_time=check_out_time,
            checked_out_by=actor,
            check_out_method=method,
            flags=merge_flags(session.flags, *extra_flags),
        )
        tx.save_session(closed)
        self._history.record(
            tx,
            actor=actor,
            change_kind=ChangeKind.SESSION_CLOSE,
            before=session,
            after=closed,
            reason=reason,
        )
        logger.info("Checked out %s at %s (method=%s)", tx.key, check_out_time.isoformat(), method.value)
        return closed

    def close_session(
        self,
        student_id: str,
        event_id: str,
        check_out_time: datetime,
        *,
        actor: str,
        reason: str,
    ) -> Session:
        """Force-close the open session of a student who forgot to check out."""

        reason = require_non_empty(reason, "reason")
        check_out_time = to_local_naive(check_out_time)
        with self._store.transaction(LedgerKey(student_id, event_id)) as tx:
            open_session = tx.get_open_session()
            if open_session is None:
                raise NotFound(f"No open session for {tx.key}")
            if check_out_time <= open_session.check_in_time:
                raise InvalidRange("Check-out time must be after check-in time")
            return self._close(
                tx,
                open_session,
                check_out_time,
                actor=actor,
                method=CheckOutMethod.FORCED,
                extra_flags=(SessionFlag.FORCED_CHECKOUT.value,),
                reason=reason,
            )

    def force_close_all(
        self,
        event_id: str,
        *,
        actor: str,
        reason: Optional[str] = None,
        checkout_times: Optional[Mapping[str, datetime]] = None,
    ) -> list[Session]:
        """Close every open session of an event.

        Each session closes at ``checkout_times[activity_id]`` when given,
        otherwise at its activity's default end on the check-in day. Every
        session is its own transaction; sessions that cannot be closed are
        skipped and logged.
        """

        reason = (reason or "").strip() or DEFAULT_BULK_CLOSE_REASON
        checkout_times = checkout_times or {}
        closed: list[Session] = []

        for candidate in self._store.list_open_sessions(event_id):
            target = checkout_times.get(candidate.activity_id)
            if target is None:
                window = self._roster.get_activity_default_window(event_id, candidate.activity_id)
                if window is None:
                    logger.warning("Skipping %s: activity %s has no default window", candidate.key, candidate.activity_id)
                    continue
                target = datetime.combine(candidate.check_in_time.date(), window.end)
            else:
                target = to_local_naive(target)

            try:
                with self._store.transaction(candidate.key) as tx:
                    current = tx.get_open_session()
                    if current is None or current.session_id != candidate.session_id:
                        logger.info("Skipping %s: session already closed", candidate.key)
                        continue
                    if target <= current.check_in_time:
                        logger.warning(
                            "Skipping %s: check-out %s is not after check-in %s",
                            candidate.key,
                            target.isoformat(),
                            current.check_in_time.isoformat(),
                        )
                        continue
                    closed.append(
                        self._close(
                            tx,
                            current,
                            target,
                            actor=actor,
                            method=CheckOutMethod.FORCED_BULK,
                            extra_flags=(SessionFlag.FORCED_CHECKOUT.value,),
                            reason=reason,
                        )
                    )
            except ConflictError as e:
                logger.warning("Skipping %s: %s", candidate.key, e)

        logger.info("Bulk check-out for event %s closed %d session(s)", event_id, len(closed))
        return closed

    def list_checked_in(self, event_id: str) -> list[Session]:
        """Students currently checked in, derived from open sessions."""
        return list(self._store.list_open_sessions(event_id))
