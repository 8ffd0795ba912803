from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Optional, Union

from ..common.datetime_utils import now_local
from ..common.ids import new_id
from ..core.constants import DEFAULT_HISTORY_PAGE_SIZE, MAX_HISTORY_PAGE_SIZE
from ..core.enums import ChangeKind
from ..core.exceptions import ValidationError
from ..core.keys import LedgerKey
from ..ledger.repository import LedgerStore
from ..ledger.unit_of_work import LedgerTransaction
from .descriptions import describe_change
from .model import HistoryCursor, HistoryPage, HistoryRecord, snapshot

logger = logging.getLogger(__name__)


class ChangeHistoryRecorder:
    """Append-only audit log of ledger mutations.

    ``record`` is only called by the other ledger services, inside the same
    transaction as the mutation it describes. The read side lists discrete
    change events only; the currently active override is never shown as an
    entry of its own.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        clock: Callable[[], Any] = now_local,
        id_factory: Callable[[], str] = new_id,
        page_size: int = DEFAULT_HISTORY_PAGE_SIZE,
    ):
        self._store = store
        self._clock = clock
        self._new_id = id_factory
        self._page_size = int(page_size)

    def record(
        self,
        tx: LedgerTransaction,
        *,
        actor: str,
        change_kind: ChangeKind,
        before: Any,
        after: Any,
        reason: Optional[str] = None,
    ) -> HistoryRecord:
        before_state = snapshot(before)
        after_state = snapshot(after)
        record = HistoryRecord(
            record_id=self._new_id(),
            student_id=tx.key.student_id,
            event_id=tx.key.event_id,
            recorded_at=self._clock(),
            actor=actor,
            change_kind=change_kind,
            before=before_state,
            after=after_state,
            reason=reason,
            description=describe_change(change_kind, before_state, after_state, reason),
        )
        tx.append_history(record)
        logger.debug("History %s for %s: %s", change_kind.value, tx.key, record.description)
        return record

    def list_history(
        self,
        student_id: str,
        event_id: str,
        cursor: Union[str, HistoryCursor, None] = None,
        limit: Optional[int] = None,
    ) -> HistoryPage:
        limit = self._page_size if limit is None else int(limit)
        if limit <= 0 or limit > MAX_HISTORY_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_PAGE_SIZE}")

        if isinstance(cursor, str):
            cursor = HistoryCursor.decode(cursor) if cursor else None

        rows = list(self._store.list_history(LedgerKey(student_id, event_id), before=cursor, limit=limit + 1))
        records = rows[:limit]
        next_cursor = None
        if len(rows) > limit:
            next_cursor = HistoryCursor.after(records[-1]).encode()
        return HistoryPage(records=records, next_cursor=next_cursor)

    def iter_history(
        self,
        student_id: str,
        event_id: str,
        *,
        page_size: Optional[int] = None,
    ) -> Iterator[HistoryRecord]:
        """Lazily walk the whole history, newest first, one page at a time."""

        cursor: Optional[str] = None
        while True:
            page = self.list_history(student_id, event_id, cursor, page_size)
            yield from page.records
            if page.next_cursor is None:
                return
            cursor = page.next_cursor
