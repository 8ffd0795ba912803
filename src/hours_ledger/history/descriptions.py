"""Human-readable one-line summaries of history records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..common.datetime_utils import format_clock
from ..core.enums import ChangeKind, CheckOutMethod


def _ts(state: Optional[dict], field: str) -> Optional[datetime]:
    if not state or not state.get(field):
        return None
    return datetime.fromisoformat(state[field])


def _with_reason(text: str, reason: Optional[str]) -> str:
    return f"{text}. Reason: {reason}" if reason else text


def _describe_close(after: dict, reason: Optional[str]) -> str:
    out_s = format_clock(_ts(after, "check_out_time"))
    in_s = format_clock(_ts(after, "check_in_time"))
    method = after.get("check_out_method")
    if method == CheckOutMethod.FORCED.value:
        return _with_reason(f"Forced Check-Out at {out_s} (Checked in: {in_s})", reason)
    if method == CheckOutMethod.FORCED_BULK.value:
        return _with_reason(f"Bulk Forced Check-Out at {out_s} (Checked in: {in_s})", reason)
    return f"Checked out at {out_s} (Checked in: {in_s})"


def _describe_edit(before: dict, after: dict, reason: Optional[str]) -> str:
    changes = []
    if before.get("start_time") != after.get("start_time"):
        changes.append(
            f"Changed Start from {format_clock(_ts(before, 'start_time'))} "
            f"to {format_clock(_ts(after, 'start_time'))}"
        )
    if before.get("end_time") != after.get("end_time"):
        changes.append(
            f"Changed End from {format_clock(_ts(before, 'end_time'))} "
            f"to {format_clock(_ts(after, 'end_time'))}"
        )
    if before.get("activity_id") != after.get("activity_id"):
        changes.append(f"Changed Activity from {before.get('activity_id')} to {after.get('activity_id')}")
    return _with_reason(" and ".join(changes), reason)


def describe_change(
    change_kind: ChangeKind,
    before: Optional[dict],
    after: Optional[dict],
    reason: Optional[str] = None,
) -> str:
    if change_kind == ChangeKind.SESSION_OPEN:
        return f"Checked in at {format_clock(_ts(after, 'check_in_time'))}"

    if change_kind == ChangeKind.SESSION_CLOSE:
        return _describe_close(after or {}, reason)

    if change_kind == ChangeKind.MANUAL_ENTRY_CREATE:
        text = (
            f"Manual entry {format_clock(_ts(after, 'start_time'))} "
            f"to {format_clock(_ts(after, 'end_time'))}"
        )
        return _with_reason(text, reason)

    if change_kind == ChangeKind.MANUAL_ENTRY_EDIT:
        return _describe_edit(before or {}, after or {}, reason)

    if change_kind == ChangeKind.OVERRIDE_SET:
        was = (before or {}).get("hours") if (before or {}).get("active") else None
        text = f"Override set to {(after or {}).get('hours')} hours (was {was if was is not None else 'none'})"
        return _with_reason(text, reason)

    if change_kind == ChangeKind.OVERRIDE_CLEAR:
        return _with_reason(f"Override of {(before or {}).get('hours')} hours cleared", reason)

    if change_kind == ChangeKind.ENTRY_VOID:
        return _with_reason("Entry voided", reason)

    if change_kind == ChangeKind.ENTRY_RESTORE:
        return _with_reason("Entry restored from voided state", reason)

    return change_kind.value
