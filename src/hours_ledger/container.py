from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from .common.datetime_utils import now_local
from .core.constants import DEFAULT_FLAG_TOLERANCE_MINUTES, DEFAULT_HISTORY_PAGE_SIZE
from .database.bootstrap import db_config_from_dict
from .database.connection import DatabaseConnection
from .history.recorder import ChangeHistoryRecorder
from .hours.aggregator import HoursAggregator
from .ledger.memory_store import InMemoryLedgerStore
from .ledger.mysql_store import MySQLLedgerStore
from .ledger.repository import LedgerStore
from .ledger.service import LedgerService
from .manual.service import ManualEntryValidator
from .overrides.service import OverrideService
from .roster.memory_roster_repository import InMemoryRosterRepository
from .roster.mysql_roster_repository import MySQLRosterRepository
from .roster.repository import RosterGateway
from .sessions.flags import ScanFlagPolicy
from .sessions.service import SessionTracker


@dataclass(frozen=True)
class Container:
    conn: Optional[DatabaseConnection]

    ledger_store: LedgerStore
    roster: RosterGateway

    history: ChangeHistoryRecorder
    session_tracker: SessionTracker
    manual_entries: ManualEntryValidator
    overrides: OverrideService
    hours: HoursAggregator
    ledger_service: LedgerService


def _wire(
    *,
    conn: Optional[DatabaseConnection],
    store: LedgerStore,
    roster: RosterGateway,
    history_page_size: int,
    flag_tolerance_minutes: int,
    clock: Callable[[], Any] = now_local,
) -> Container:
    history = ChangeHistoryRecorder(store, clock=clock, page_size=history_page_size)
    session_tracker = SessionTracker(
        store,
        roster,
        history,
        flag_policy=ScanFlagPolicy(tolerance_minutes=flag_tolerance_minutes),
    )
    manual_entries = ManualEntryValidator(store, roster, history, clock=clock)
    overrides = OverrideService(store, roster, history, clock=clock)
    hours = HoursAggregator(store)
    ledger_service = LedgerService(
        store,
        sessions=session_tracker,
        manual=manual_entries,
        overrides=overrides,
        hours=hours,
        history=history,
    )

    return Container(
        conn=conn,
        ledger_store=store,
        roster=roster,
        history=history,
        session_tracker=session_tracker,
        manual_entries=manual_entries,
        overrides=overrides,
        hours=hours,
        ledger_service=ledger_service,
    )


def build_container(
    *,
    db_config: dict,
    history_page_size: int = DEFAULT_HISTORY_PAGE_SIZE,
    flag_tolerance_minutes: int = DEFAULT_FLAG_TOLERANCE_MINUTES,
) -> Container:
    conn = DatabaseConnection.get_instance(db_config_from_dict(db_config))

    return _wire(
        conn=conn,
        store=MySQLLedgerStore(conn),
        roster=MySQLRosterRepository(conn),
        history_page_size=history_page_size,
        flag_tolerance_minutes=flag_tolerance_minutes,
    )


def build_memory_container(
    roster: Optional[InMemoryRosterRepository] = None,
    *,
    history_page_size: int = DEFAULT_HISTORY_PAGE_SIZE,
    flag_tolerance_minutes: int = DEFAULT_FLAG_TOLERANCE_MINUTES,
    clock: Callable[[], Any] = now_local,
) -> Container:
    """Process-local container; nothing survives a restart."""

    return _wire(
        conn=None,
        store=InMemoryLedgerStore(),
        roster=roster if roster is not None else InMemoryRosterRepository(),
        history_page_size=history_page_size,
        flag_tolerance_minutes=flag_tolerance_minutes,
        clock=clock,
    )
