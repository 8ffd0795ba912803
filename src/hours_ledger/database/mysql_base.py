from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import time, timedelta
from typing import Any, Dict, List, Optional

import mysql.connector
from mysql.connector import errorcode

from ..core.exceptions import ConcurrentMutationError, DomainError, StorageUnavailable
from .connection import DatabaseConnection

logger = logging.getLogger(__name__)

_LOCK_CONFLICT_ERRNOS = {errorcode.ER_LOCK_WAIT_TIMEOUT, errorcode.ER_LOCK_DEADLOCK}


def translate_mysql_error(exc: mysql.connector.Error) -> DomainError:
    """Map a connector error onto the ledger's error taxonomy."""

    if getattr(exc, "errno", None) in _LOCK_CONFLICT_ERRNOS:
        return ConcurrentMutationError(f"Concurrent update aborted: {exc}")
    if isinstance(exc, (mysql.connector.errors.InterfaceError, mysql.connector.errors.OperationalError)):
        return StorageUnavailable(f"Database unavailable: {exc}")
    return StorageUnavailable(f"Database error: {exc}")


@contextmanager
def db_cursor(conn_factory: DatabaseConnection, *, dictionary: bool = True):
    try:
        conn = conn_factory.connect()
    except mysql.connector.Error as exc:
        logger.error("Could not connect to database: %s", exc)
        raise translate_mysql_error(exc) from exc

    try:
        cur = conn.cursor(dictionary=dictionary)
        try:
            yield conn, cur
            conn.commit()
        finally:
            cur.close()
    except mysql.connector.Error as exc:
        _safe_rollback(conn)
        raise translate_mysql_error(exc) from exc
    except Exception:
        _safe_rollback(conn)
        raise
    finally:
        conn.close()


def _safe_rollback(conn) -> None:
    try:
        conn.rollback()
    except mysql.connector.Error as exc:
        logger.error("Rollback failed: %s", exc)


def fetchone(cur) -> Optional[Dict[str, Any]]:
    row = cur.fetchone()
    return row if row else None


def fetchall(cur) -> List[Dict[str, Any]]:
    rows = cur.fetchall()
    return list(rows or [])


def normalize_mysql_time(value: Any) -> Optional[time]:
    """Coerce a TIME column to ``datetime.time``.

    The connector hands TIME back as ``timedelta`` (C extension), ``time`` or
    an ``HH:MM[:SS]`` string depending on driver and settings.
    """

    if value is None or isinstance(value, time):
        return value
    if isinstance(value, timedelta):
        seconds = int(value.total_seconds()) % 86400
        return time(seconds // 3600, seconds % 3600 // 60, seconds % 60)
    if isinstance(value, str):
        try:
            h, m, *rest = (int(p) for p in value.strip().split(":"))
        except ValueError as exc:
            raise ValueError(f"Invalid time string: {value!r}") from exc
        return time(h, m, rest[0] if rest else 0)
    raise TypeError(f"Unsupported MySQL TIME value type: {type(value)!r}")
