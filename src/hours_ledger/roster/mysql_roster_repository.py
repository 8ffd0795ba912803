from __future__ import annotations

from typing import Optional

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchone, normalize_mysql_time
from .model import ActivityWindow
from .repository import RosterGateway


class MySQLRosterRepository(RosterGateway):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_active_activity(self, event_id: str) -> Optional[str]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT active_activity_id FROM events WHERE event_id=%s",
                (event_id,),
            )
            r = fetchone(cur)
            if not r:
                return None
            return r.get("active_activity_id")

    def get_activity_default_window(self, event_id: str, activity_id: str) -> Optional[ActivityWindow]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT default_start, default_end
                FROM activities
                WHERE event_id=%s AND activity_id=%s
                """,
                (event_id, activity_id),
            )
            r = fetchone(cur)
            if not r:
                return None
            return ActivityWindow(
                start=normalize_mysql_time(r["default_start"]),
                end=normalize_mysql_time(r["default_end"]),
            )

    def student_exists(self, student_id: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT 1 AS found FROM students WHERE student_id=%s", (student_id,))
            return fetchone(cur) is not None
