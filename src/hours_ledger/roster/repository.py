from __future__ import annotations

from typing import Optional, Protocol

from .model import ActivityWindow


class RosterGateway(Protocol):
    """Read-only view of the roster/event subsystem used by the ledger."""

    def get_active_activity(self, event_id: str) -> Optional[str]:
        raise NotImplementedError

    def get_activity_default_window(self, event_id: str, activity_id: str) -> Optional[ActivityWindow]:
        raise NotImplementedError

    def student_exists(self, student_id: str) -> bool:
        raise NotImplementedError
