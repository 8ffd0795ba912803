from __future__ import annotations

from datetime import datetime, time, timedelta
from pathlib import Path

import mysql.connector
import pytest
from mysql.connector import errorcode

from hours_ledger.core.enums import ChangeKind
from hours_ledger.core.exceptions import (
    ConcurrentMutationError,
    LedgerIntegrityError,
    StorageUnavailable,
)
from hours_ledger.core.keys import LedgerKey
from hours_ledger.database.bootstrap import db_config_from_dict, split_statements, strip_database_header
from hours_ledger.database.mysql_base import db_cursor, normalize_mysql_time, translate_mysql_error
from hours_ledger.history.model import HistoryCursor
from hours_ledger.history.recorder import ChangeHistoryRecorder
from hours_ledger.ledger.mysql_store import MySQLLedgerStore
from hours_ledger.sessions.model import Session

SCHEMA = Path(__file__).resolve().parents[2] / "database" / "schema.sql"


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    def execute(self, sql, params=None):
        if self.conn.fail_on and self.conn.fail_on in sql:
            raise self.conn.error
        self.conn.statements.append((" ".join(sql.split()), params))

    def fetchone(self):
        return None

    def fetchall(self):
        return []

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, *, fail_on=None, error=None):
        self.statements = []
        self.committed = False
        self.rolled_back = False
        self.closed = False
        self.fail_on = fail_on
        self.error = error

    def cursor(self, dictionary=False):
        return FakeCursor(self)

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class FakeConnFactory:
    def __init__(self, conn=None, connect_error=None):
        self.conn = conn or FakeConnection()
        self.connect_error = connect_error

    def connect(self):
        if self.connect_error is not None:
            raise self.connect_error
        return self.conn


@pytest.mark.parametrize("errno", [errorcode.ER_LOCK_DEADLOCK, errorcode.ER_LOCK_WAIT_TIMEOUT])
def test_lock_conflicts_become_concurrent_mutation(errno):
    exc = mysql.connector.errors.DatabaseError(msg="lock", errno=errno)

    assert isinstance(translate_mysql_error(exc), ConcurrentMutationError)


@pytest.mark.parametrize(
    "exc",
    [
        mysql.connector.errors.InterfaceError(msg="Can't connect", errno=2003),
        mysql.connector.errors.OperationalError(msg="gone away", errno=2006),
        mysql.connector.errors.ProgrammingError(msg="syntax", errno=1064),
    ],
)
def test_other_errors_become_storage_unavailable(exc):
    assert isinstance(translate_mysql_error(exc), StorageUnavailable)


def test_db_cursor_commits_on_success():
    factory = FakeConnFactory()

    with db_cursor(factory) as (_, cur):
        cur.execute("SELECT 1")

    assert factory.conn.committed
    assert not factory.conn.rolled_back
    assert factory.conn.closed


def test_db_cursor_connect_failure_is_storage_unavailable():
    factory = FakeConnFactory(connect_error=mysql.connector.errors.InterfaceError(msg="down", errno=2003))

    with pytest.raises(StorageUnavailable):
        with db_cursor(factory):
            pass


def test_db_cursor_rolls_back_on_deadlock():
    error = mysql.connector.errors.DatabaseError(msg="deadlock", errno=errorcode.ER_LOCK_DEADLOCK)
    factory = FakeConnFactory(FakeConnection(fail_on="UPDATE", error=error))

    with pytest.raises(ConcurrentMutationError):
        with db_cursor(factory) as (_, cur):
            cur.execute("UPDATE sessions SET voided=1")

    assert factory.conn.rolled_back
    assert not factory.conn.committed


def test_mysql_transaction_locks_the_key_row_first():
    factory = FakeConnFactory()
    store = MySQLLedgerStore(factory)
    history = ChangeHistoryRecorder(store, clock=lambda: datetime(2026, 3, 14, 9, 0))
    session = Session("s1", "S1", "E1", "A1", datetime(2026, 3, 14, 9, 0))

    with store.transaction(LedgerKey("S1", "E1")) as tx:
        tx.save_session(session)
        history.record(tx, actor="scanner", change_kind=ChangeKind.SESSION_OPEN, before=None, after=session)

    statements = [sql for sql, _ in factory.conn.statements]
    assert statements[0].startswith("INSERT IGNORE INTO ledger_locks")
    assert statements[1].endswith("FOR UPDATE")
    assert statements[2].startswith("INSERT INTO sessions")
    assert statements[3].startswith("INSERT INTO history_records")
    assert factory.conn.committed


def test_latest_closed_session_query_skips_voided_sessions():
    factory = FakeConnFactory()
    store = MySQLLedgerStore(factory)

    with store.transaction(LedgerKey("S1", "E1")) as tx:
        assert tx.get_latest_closed_session() is None

    sql, params = factory.conn.statements[-1]
    assert "check_out_time IS NOT NULL AND voided=0" in sql
    assert params == ("S1", "E1")


def test_history_page_is_keyed_on_sequence_only():
    factory = FakeConnFactory()
    store = MySQLLedgerStore(factory)

    assert store.list_history(LedgerKey("S1", "E1"), before=HistoryCursor(sequence=7), limit=3) == []

    sql, params = factory.conn.statements[-1]
    assert "seq_no < %s" in sql
    assert "ORDER BY seq_no DESC" in sql
    assert "recorded_at <" not in sql
    assert params == ("S1", "E1", 7, 3)


def test_mysql_transaction_without_history_rolls_back():
    factory = FakeConnFactory()
    store = MySQLLedgerStore(factory)

    with pytest.raises(LedgerIntegrityError):
        with store.transaction(LedgerKey("S1", "E1")) as tx:
            tx.save_session(Session("s1", "S1", "E1", "A1", datetime(2026, 3, 14, 9, 0)))

    assert factory.conn.rolled_back
    assert not factory.conn.committed


def test_history_failure_rolls_back_entity_write():
    error = mysql.connector.errors.IntegrityError(msg="duplicate", errno=1062)
    factory = FakeConnFactory(FakeConnection(fail_on="history_records", error=error))
    store = MySQLLedgerStore(factory)
    history = ChangeHistoryRecorder(store)
    session = Session("s1", "S1", "E1", "A1", datetime(2026, 3, 14, 9, 0))

    with pytest.raises(StorageUnavailable):
        with store.transaction(LedgerKey("S1", "E1")) as tx:
            tx.save_session(session)
            history.record(tx, actor="scanner", change_kind=ChangeKind.SESSION_OPEN, before=None, after=session)

    assert factory.conn.rolled_back
    assert not factory.conn.committed


@pytest.mark.parametrize(
    "value,expected",
    [
        (time(9, 30), time(9, 30)),
        (timedelta(hours=17, minutes=5), time(17, 5)),
        ("08:30:00", time(8, 30)),
        (None, None),
    ],
)
def test_normalize_mysql_time(value, expected):
    assert normalize_mysql_time(value) == expected


def test_schema_splits_into_create_table_statements():
    sql = strip_database_header(SCHEMA.read_text(encoding="utf-8"))
    statements = list(split_statements(sql))

    tables = [s.split("(")[0].split()[-1] for s in statements]
    assert tables == [
        "students",
        "events",
        "activities",
        "ledger_locks",
        "sessions",
        "manual_entries",
        "overrides",
        "history_records",
    ]


def test_split_statements_keeps_quoted_semicolons():
    sql = "-- header; not a statement\nINSERT INTO t VALUES('a;b');\nSELECT \"x;y\";\nSELECT 1"

    assert list(split_statements(sql)) == [
        "INSERT INTO t VALUES('a;b')",
        'SELECT "x;y"',
        "SELECT 1",
    ]


def test_db_config_from_dict_defaults():
    config = db_config_from_dict({"host": "db", "password": "pw"})

    assert config.describe() == "root@db:3306/hours_ledger"
