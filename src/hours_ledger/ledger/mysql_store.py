from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterator, Optional, Sequence

from ..core.enums import ChangeKind, CheckOutMethod
from ..core.keys import LedgerKey
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone
from ..history.model import HistoryCursor, HistoryRecord
from ..manual.model import ManualEntry
from ..overrides.model import Override
from ..sessions.model import Session
from .repository import LedgerStore
from .unit_of_work import LedgerTransaction

_SESSION_COLUMNS = """
    session_id, student_id, event_id, activity_id, check_in_time, check_out_time,
    checked_in_by, checked_out_by, check_out_method, flags, voided, void_reason
"""

_ENTRY_COLUMNS = """
    entry_id, student_id, event_id, activity_id, start_time, end_time,
    reason, entered_by, entered_at, voided, void_reason
"""

_OVERRIDE_COLUMNS = "student_id, event_id, hours, reason, set_by, set_at, active"

_HISTORY_COLUMNS = """
    seq_no, record_id, student_id, event_id, recorded_at, actor, change_kind,
    before_state, after_state, reason, description
"""


def _row_to_session(r: dict) -> Session:
    method = r.get("check_out_method")
    flags = r.get("flags") or ""
    return Session(
        session_id=r["session_id"],
        student_id=r["student_id"],
        event_id=r["event_id"],
        activity_id=r["activity_id"],
        check_in_time=r["check_in_time"],
        check_out_time=r.get("check_out_time"),
        checked_in_by=r.get("checked_in_by") or "scanner",
        checked_out_by=r.get("checked_out_by"),
        check_out_method=CheckOutMethod(method) if method else None,
        flags=tuple(f for f in flags.split(",") if f),
        voided=bool(r.get("voided")),
        void_reason=r.get("void_reason"),
    )


def _row_to_entry(r: dict) -> ManualEntry:
    return ManualEntry(
        entry_id=r["entry_id"],
        student_id=r["student_id"],
        event_id=r["event_id"],
        activity_id=r["activity_id"],
        start_time=r["start_time"],
        end_time=r["end_time"],
        reason=r["reason"],
        entered_by=r["entered_by"],
        entered_at=r["entered_at"],
        voided=bool(r.get("voided")),
        void_reason=r.get("void_reason"),
    )


def _row_to_override(r: dict) -> Override:
    return Override(
        student_id=r["student_id"],
        event_id=r["event_id"],
        hours=Decimal(str(r["hours"])),
        reason=r["reason"],
        set_by=r["set_by"],
        set_at=r["set_at"],
        active=bool(r.get("active")),
    )


def _load_state(value) -> Optional[dict]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_to_history(r: dict) -> HistoryRecord:
    return HistoryRecord(
        record_id=r["record_id"],
        student_id=r["student_id"],
        event_id=r["event_id"],
        recorded_at=r["recorded_at"],
        actor=r["actor"],
        change_kind=ChangeKind(r["change_kind"]),
        before=_load_state(r.get("before_state")),
        after=_load_state(r.get("after_state")),
        reason=r.get("reason"),
        description=r.get("description") or "",
        sequence=int(r["seq_no"]),
    )


class _MySQLTransaction(LedgerTransaction):
    """Unit of work on a connection that already holds the key's row lock."""

    def __init__(self, key: LedgerKey, cur):
        super().__init__(key)
        self._cur = cur

    def get_open_session(self) -> Optional[Session]:
        self._cur.execute(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions
            WHERE student_id=%s AND event_id=%s AND check_out_time IS NULL
            ORDER BY check_in_time DESC
            LIMIT 1
            """,
            (self.key.student_id, self.key.event_id),
        )
        r = fetchone(self._cur)
        return _row_to_session(r) if r else None

    def get_latest_closed_session(self) -> Optional[Session]:
        self._cur.execute(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM sessions
            WHERE student_id=%s AND event_id=%s AND check_out_time IS NOT NULL AND voided=0
            ORDER BY check_out_time DESC
            LIMIT 1
            """,
            (self.key.student_id, self.key.event_id),
        )
        r = fetchone(self._cur)
        return _row_to_session(r) if r else None

    def get_session(self, session_id: str) -> Optional[Session]:
        self._cur.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE session_id=%s AND student_id=%s AND event_id=%s",
            (session_id, self.key.student_id, self.key.event_id),
        )
        r = fetchone(self._cur)
        return _row_to_session(r) if r else None

    def get_manual_entry(self, entry_id: str) -> Optional[ManualEntry]:
        self._cur.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM manual_entries WHERE entry_id=%s AND student_id=%s AND event_id=%s",
            (entry_id, self.key.student_id, self.key.event_id),
        )
        r = fetchone(self._cur)
        return _row_to_entry(r) if r else None

    def get_override(self) -> Optional[Override]:
        self._cur.execute(
            f"SELECT {_OVERRIDE_COLUMNS} FROM overrides WHERE student_id=%s AND event_id=%s",
            (self.key.student_id, self.key.event_id),
        )
        r = fetchone(self._cur)
        return _row_to_override(r) if r else None

    def _write_session(self, session: Session) -> None:
        self._cur.execute(
            f"""
            INSERT INTO sessions({_SESSION_COLUMNS})
            VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
            ON DUPLICATE KEY UPDATE
                check_out_time=VALUES(check_out_time),
                checked_out_by=VALUES(checked_out_by),
                check_out_method=VALUES(check_out_method),
                flags=VALUES(flags),
                voided=VALUES(voided),
                void_reason=VALUES(void_reason)
            """,
            (
                session.session_id,
                session.student_id,
                session.event_id,
                session.activity_id,
                session.check_in_time,
                session.check_out_time,
                session.checked_in_by,
                session.checked_out_by,
                session.check_out_method.value if session.check_out_method else None,
                ",".join(session.flags),
                int(session.voided),
                session.void_reason,
            ),
        )

    def _write_manual_entry(self, entry: ManualEntry) -> None:
        self._cur.execute(
            f"""
            INSERT INTO manual_entries({_ENTRY_COLUMNS})
            VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
            ON DUPLICATE KEY UPDATE
                activity_id=VALUES(activity_id),
                start_time=VALUES(start_time),
                end_time=VALUES(end_time),
                reason=VALUES(reason),
                entered_by=VALUES(entered_by),
                entered_at=VALUES(entered_at),
                voided=VALUES(voided),
                void_reason=VALUES(void_reason)
            """,
            (
                entry.entry_id,
                entry.student_id,
                entry.event_id,
                entry.activity_id,
                entry.start_time,
                entry.end_time,
                entry.reason,
                entry.entered_by,
                entry.entered_at,
                int(entry.voided),
                entry.void_reason,
            ),
        )

    def _write_override(self, override: Override) -> None:
        self._cur.execute(
            f"""
            INSERT INTO overrides({_OVERRIDE_COLUMNS})
            VALUES(%s,%s,%s,%s,%s,%s,%s)
            ON DUPLICATE KEY UPDATE
                hours=VALUES(hours),
                reason=VALUES(reason),
                set_by=VALUES(set_by),
                set_at=VALUES(set_at),
                active=VALUES(active)
            """,
            (
                override.student_id,
                override.event_id,
                override.hours,
                override.reason,
                override.set_by,
                override.set_at,
                int(override.active),
            ),
        )

    def _write_history(self, record: HistoryRecord) -> None:
        self._cur.execute(
            """
            INSERT INTO history_records(
                record_id, student_id, event_id, recorded_at, actor, change_kind,
                before_state, after_state, reason, description
            )
            VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
            """,
            (
                record.record_id,
                record.student_id,
                record.event_id,
                record.recorded_at,
                record.actor,
                record.change_kind.value,
                json.dumps(record.before) if record.before is not None else None,
                json.dumps(record.after) if record.after is not None else None,
                record.reason,
                record.description,
            ),
        )


class MySQLLedgerStore(LedgerStore):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    @contextmanager
    def transaction(self, key: LedgerKey) -> Iterator[LedgerTransaction]:
        key = LedgerKey(*key)
        with db_cursor(self._conn_factory) as (_, cur):
            # Row lock on the key serializes all mutations of one student/event.
            cur.execute(
                "INSERT IGNORE INTO ledger_locks(student_id, event_id) VALUES(%s,%s)",
                (key.student_id, key.event_id),
            )
            cur.execute(
                "SELECT student_id FROM ledger_locks WHERE student_id=%s AND event_id=%s FOR UPDATE",
                (key.student_id, key.event_id),
            )
            fetchall(cur)
            tx = _MySQLTransaction(key, cur)
            yield tx
            tx.verify()

    def list_sessions(self, key: LedgerKey) -> Sequence[Session]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM sessions
                WHERE student_id=%s AND event_id=%s
                ORDER BY check_in_time ASC
                """,
                (key.student_id, key.event_id),
            )
            return [_row_to_session(r) for r in fetchall(cur)]

    def list_manual_entries(self, key: LedgerKey) -> Sequence[ManualEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM manual_entries
                WHERE student_id=%s AND event_id=%s
                ORDER BY start_time ASC
                """,
                (key.student_id, key.event_id),
            )
            return [_row_to_entry(r) for r in fetchall(cur)]

    def get_override(self, key: LedgerKey) -> Optional[Override]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_OVERRIDE_COLUMNS} FROM overrides WHERE student_id=%s AND event_id=%s",
                (key.student_id, key.event_id),
            )
            r = fetchone(cur)
            return _row_to_override(r) if r else None

    def list_history(
        self,
        key: LedgerKey,
        *,
        before: Optional[HistoryCursor] = None,
        limit: int = 50,
    ) -> Sequence[HistoryRecord]:
        clauses = ["student_id=%s", "event_id=%s"]
        params: list[object] = [key.student_id, key.event_id]

        if before is not None:
            clauses.append("seq_no < %s")
            params.append(int(before.sequence))

        where = " AND ".join(clauses)
        params.append(int(limit))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_HISTORY_COLUMNS}
                FROM history_records
                WHERE {where}
                ORDER BY seq_no DESC
                LIMIT %s
                """,
                tuple(params),
            )
            return [_row_to_history(r) for r in fetchall(cur)]

    def find_session(self, session_id: str) -> Optional[Session]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE session_id=%s", (session_id,))
            r = fetchone(cur)
            return _row_to_session(r) if r else None

    def find_manual_entry(self, entry_id: str) -> Optional[ManualEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_ENTRY_COLUMNS} FROM manual_entries WHERE entry_id=%s", (entry_id,))
            r = fetchone(cur)
            return _row_to_entry(r) if r else None

    def list_open_sessions(self, event_id: str) -> Sequence[Session]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM sessions
                WHERE event_id=%s AND check_out_time IS NULL
                ORDER BY check_in_time ASC
                """,
                (event_id,),
            )
            return [_row_to_session(r) for r in fetchall(cur)]

    def list_sessions_for_event(self, event_id: str, *, day: date) -> Sequence[Session]:
        start = datetime.combine(day, datetime.min.time())
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM sessions
                WHERE event_id=%s AND check_in_time >= %s AND check_in_time < %s
                ORDER BY check_in_time ASC
                """,
                (event_id, start, start + timedelta(days=1)),
            )
            return [_row_to_session(r) for r in fetchall(cur)]

    def list_manual_entries_for_event(self, event_id: str, *, day: date) -> Sequence[ManualEntry]:
        start = datetime.combine(day, datetime.min.time())
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM manual_entries
                WHERE event_id=%s AND start_time >= %s AND start_time < %s
                ORDER BY start_time ASC
                """,
                (event_id, start, start + timedelta(days=1)),
            )
            return [_row_to_entry(r) for r in fetchall(cur)]

    def activity_in_use(self, event_id: str, activity_id: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT 1 AS used FROM sessions WHERE event_id=%s AND activity_id=%s
                UNION ALL
                SELECT 1 AS used FROM manual_entries WHERE event_id=%s AND activity_id=%s
                LIMIT 1
                """,
                (event_id, activity_id, event_id, activity_id),
            )
            return fetchone(cur) is not None
