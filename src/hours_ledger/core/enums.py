from __future__ import annotations

from enum import Enum


class EntrySource(str, Enum):
    """Where a ledger entry came from."""

    SCAN = "scan"
    MANUAL = "manual"


class EntryKind(str, Enum):
    """Addressable entry collections (used by void/restore)."""

    SESSION = "session"
    MANUAL_ENTRY = "manual-entry"


class CheckOutMethod(str, Enum):
    SCAN = "scan"
    FORCED = "forced"
    FORCED_BULK = "forced_bulk"


class ChangeKind(str, Enum):
    """Kinds of mutation recorded in the change history."""

    SESSION_OPEN = "session-open"
    SESSION_CLOSE = "session-close"
    MANUAL_ENTRY_CREATE = "manual-entry-create"
    MANUAL_ENTRY_EDIT = "manual-entry-edit"
    OVERRIDE_SET = "override-set"
    OVERRIDE_CLEAR = "override-clear"
    ENTRY_VOID = "entry-void"
    ENTRY_RESTORE = "entry-restore"


class ScanOutcomeKind(str, Enum):
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    REJECTED = "rejected"


class SessionFlag(str, Enum):
    EARLY_ARRIVAL = "early_arrival"
    LATE_STAY = "late_stay"
    FORCED_CHECKOUT = "forced_checkout"
