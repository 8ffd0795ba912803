from __future__ import annotations

import dataclasses
import threading
from datetime import date, datetime, time, timedelta, timezone

import pytest

from hours_ledger.core.enums import ChangeKind, CheckOutMethod, ScanOutcomeKind, SessionFlag
from hours_ledger.core.exceptions import InvalidRange, MissingField, NotFound
from hours_ledger.core.keys import LedgerKey
from hours_ledger.history.model import snapshot
from hours_ledger.history.recorder import ChangeHistoryRecorder
from hours_ledger.identity.codec import encode
from hours_ledger.ledger.memory_store import InMemoryLedgerStore
from hours_ledger.roster.memory_roster_repository import InMemoryRosterRepository
from hours_ledger.roster.model import Activity, ActivityWindow
from hours_ledger.sessions.flags import ScanFlagPolicy
from hours_ledger.sessions.service import SessionTracker

DAY = date(2026, 3, 14)
KEY = LedgerKey("S1", "E1")


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(DAY, time(hour, minute))


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def make_tracker():
    roster = InMemoryRosterRepository()
    roster.add_student("S1")
    roster.add_student("S2")
    roster.add_activity(Activity("A1", "E1", "Morning Shift", ActivityWindow(time(9, 0), time(11, 0))))
    roster.add_activity(Activity("A2", "E1", "Lunch", ActivityWindow(time(12, 0), time(13, 0))), active=False)

    store = InMemoryLedgerStore()
    history = ChangeHistoryRecorder(store, clock=FakeClock(at(8)))
    tracker = SessionTracker(store, roster, history, flag_policy=ScanFlagPolicy(tolerance_minutes=15))
    return tracker, store, roster, history


def all_history(history: ChangeHistoryRecorder, student_id: str = "S1"):
    return history.list_history(student_id, "E1", limit=500).records


def test_first_scan_opens_session():
    tracker, store, _, history = make_tracker()

    outcome = tracker.record_scan(encode("S1", "E1"), at(9))

    assert outcome.kind == ScanOutcomeKind.CHECKED_IN
    assert outcome.session.is_open
    assert outcome.session.activity_id == "A1"
    assert store.list_sessions(KEY) == [outcome.session]

    records = all_history(history)
    assert [r.change_kind for r in records] == [ChangeKind.SESSION_OPEN]
    assert records[0].before is None
    assert records[0].after == snapshot(outcome.session)


def test_second_scan_closes_the_open_session():
    tracker, store, _, history = make_tracker()
    token = encode("S1", "E1")

    opened = tracker.record_scan(token, at(9)).session
    outcome = tracker.record_scan(token, at(11))

    assert outcome.kind == ScanOutcomeKind.CHECKED_OUT
    closed = outcome.session
    assert closed.session_id == opened.session_id
    assert closed.check_out_method == CheckOutMethod.SCAN
    assert closed.duration() == timedelta(hours=2)

    latest = all_history(history)[0]
    assert latest.change_kind == ChangeKind.SESSION_CLOSE
    assert latest.before == snapshot(opened)
    assert latest.after == snapshot(closed)
    assert store.list_sessions(KEY) == [closed]


def test_alternating_scans_alternate_open_and_close():
    tracker, store, _, history = make_tracker()
    token = encode("S1", "E1")

    kinds = [tracker.record_scan(token, at(9 + i)).kind for i in range(6)]

    assert kinds == [
        ScanOutcomeKind.CHECKED_IN,
        ScanOutcomeKind.CHECKED_OUT,
    ] * 3
    sessions = store.list_sessions(KEY)
    assert len(sessions) == 3
    assert all(not s.is_open for s in sessions)
    assert len(all_history(history)) == 6


def test_duplicate_scan_is_rejected_and_session_stays_open():
    tracker, store, _, history = make_tracker()
    token = encode("S1", "E1")

    tracker.record_scan(token, at(10))
    outcome = tracker.record_scan(token, at(10))

    assert outcome.kind == ScanOutcomeKind.REJECTED
    assert outcome.reason == "negative-duration"
    assert store.list_sessions(KEY)[0].is_open
    assert len(all_history(history)) == 1


def test_scan_before_last_checkout_is_rejected():
    tracker, store, _, history = make_tracker()
    token = encode("S1", "E1")

    tracker.record_scan(token, at(9))
    tracker.record_scan(token, at(11))
    outcome = tracker.record_scan(token, at(10))

    assert outcome.kind == ScanOutcomeKind.REJECTED
    assert outcome.reason == "out-of-order-scan"
    sessions = store.list_sessions(KEY)
    assert len(sessions) == 1
    assert sessions[0].check_out_time == at(11)
    assert len(all_history(history)) == 2


def test_scan_after_close_starts_a_new_session():
    tracker, store, _, _ = make_tracker()
    token = encode("S1", "E1")

    first = tracker.record_scan(token, at(9)).session
    tracker.record_scan(token, at(11))
    second = tracker.record_scan(token, at(12)).session

    assert second.session_id != first.session_id
    assert second.is_open
    sessions = store.list_sessions(KEY)
    assert [s.is_open for s in sessions] == [False, True]
    assert sessions[0].check_out_time == at(11)


@pytest.mark.parametrize(
    "token,reason",
    [
        ("garbage", "invalid-format"),
        ("S1|E1|zzzzzzz", "invalid-format"),
    ],
)
def test_undecodable_tokens_are_rejected(token, reason):
    tracker, store, _, _ = make_tracker()

    outcome = tracker.record_scan(token, at(9))

    assert outcome.kind == ScanOutcomeKind.REJECTED
    assert outcome.reason == reason
    assert not outcome.accepted
    assert store.list_sessions(KEY) == []


def test_corrupted_checksum_is_rejected():
    tracker, store, _, _ = make_tracker()
    student_id, event_id, check = encode("S1", "E1").split("|")
    flipped = ("1" if check[0] == "0" else "0") + check[1:]

    outcome = tracker.record_scan(f"{student_id}|{event_id}|{flipped}", at(9))

    assert outcome.reason == "checksum-mismatch"
    assert store.list_sessions(KEY) == []


def test_unknown_student_is_rejected():
    tracker, _, _, _ = make_tracker()

    outcome = tracker.record_scan(encode("GHOST", "E1"), at(9))

    assert outcome.kind == ScanOutcomeKind.REJECTED
    assert outcome.reason == "not-found"


def test_scan_without_active_activity_is_rejected():
    tracker, store, roster, _ = make_tracker()
    roster.set_active_activity("E1", None)

    outcome = tracker.record_scan(encode("S1", "E1"), at(9))

    assert outcome.reason == "not-found"
    assert store.list_sessions(KEY) == []


def test_explicit_activity_wins_over_active_one():
    tracker, _, _, _ = make_tracker()

    outcome = tracker.record_scan(encode("S1", "E1"), at(12), activity_id="A2")

    assert outcome.session.activity_id == "A2"


def test_scans_far_outside_window_are_flagged():
    tracker, _, _, _ = make_tracker()
    token = encode("S1", "E1")

    opened = tracker.record_scan(token, at(8, 30)).session
    closed = tracker.record_scan(token, at(11, 30)).session

    assert opened.flags == (SessionFlag.EARLY_ARRIVAL.value,)
    assert closed.flags == (SessionFlag.EARLY_ARRIVAL.value, SessionFlag.LATE_STAY.value)


def test_scans_within_tolerance_are_not_flagged():
    tracker, _, _, _ = make_tracker()
    token = encode("S1", "E1")

    tracker.record_scan(token, at(8, 50))
    closed = tracker.record_scan(token, at(11, 10)).session

    assert closed.flags == ()


def test_close_session_forces_checkout():
    tracker, store, _, history = make_tracker()
    tracker.record_scan(encode("S1", "E1"), at(9))

    closed = tracker.close_session("S1", "E1", at(10, 30), actor="admin-1", reason="forgot to scan out")

    assert closed.check_out_method == CheckOutMethod.FORCED
    assert closed.checked_out_by == "admin-1"
    assert SessionFlag.FORCED_CHECKOUT.value in closed.flags
    latest = all_history(history)[0]
    assert latest.reason == "forgot to scan out"
    assert latest.description == (
        "Forced Check-Out at 10:30 AM (Checked in: 9:00 AM). Reason: forgot to scan out"
    )
    assert not store.list_sessions(KEY)[0].is_open


def test_close_session_validation():
    tracker, _, _, history = make_tracker()

    with pytest.raises(NotFound):
        tracker.close_session("S1", "E1", at(10), actor="admin-1", reason="forgot")

    tracker.record_scan(encode("S1", "E1"), at(9))

    with pytest.raises(MissingField):
        tracker.close_session("S1", "E1", at(10), actor="admin-1", reason="  ")
    with pytest.raises(InvalidRange):
        tracker.close_session("S1", "E1", at(9), actor="admin-1", reason="forgot")

    assert len(all_history(history)) == 1


def test_force_close_all_uses_activity_end_by_default():
    tracker, store, _, history = make_tracker()
    tracker.record_scan(encode("S1", "E1"), at(9))
    tracker.record_scan(encode("S2", "E1"), at(9, 15))

    closed = tracker.force_close_all("E1", actor="admin-1")

    assert len(closed) == 2
    assert {s.check_out_time for s in closed} == {at(11)}
    assert all(s.check_out_method == CheckOutMethod.FORCED_BULK for s in closed)
    assert tracker.list_checked_in("E1") == []
    latest = all_history(history)[0]
    assert latest.reason == "End of day bulk checkout"
    assert latest.description.startswith("Bulk Forced Check-Out at 11:00 AM")


def test_force_close_all_with_explicit_times_and_skips():
    tracker, store, _, _ = make_tracker()
    tracker.record_scan(encode("S1", "E1"), at(9))
    tracker.record_scan(encode("S2", "E1"), at(11, 30))

    closed = tracker.force_close_all("E1", actor="admin-1", reason="Event ended")
    assert [s.student_id for s in closed] == ["S1"]
    assert [s.student_id for s in tracker.list_checked_in("E1")] == ["S2"]

    closed = tracker.force_close_all("E1", actor="admin-1", checkout_times={"A1": at(12)})
    assert [s.check_out_time for s in closed] == [at(12)]
    assert tracker.list_checked_in("E1") == []


def test_list_checked_in_is_derived_from_open_sessions():
    tracker, _, _, _ = make_tracker()
    tracker.record_scan(encode("S1", "E1"), at(9))
    tracker.record_scan(encode("S2", "E1"), at(9, 5))
    tracker.record_scan(encode("S1", "E1"), at(10))

    assert [s.student_id for s in tracker.list_checked_in("E1")] == ["S2"]


def test_concurrent_identical_scans_open_exactly_one_session():
    tracker, store, _, history = make_tracker()
    token = encode("S1", "E1")
    barrier = threading.Barrier(8)
    outcomes = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        outcome = tracker.record_scan(token, at(9))
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    accepted = [o for o in outcomes if o.accepted]
    assert len(accepted) == 1
    assert accepted[0].kind == ScanOutcomeKind.CHECKED_IN
    assert {o.reason for o in outcomes if not o.accepted} == {"negative-duration"}
    assert len(store.list_sessions(KEY)) == 1
    assert len(all_history(history)) == 1


def test_concurrent_scans_never_produce_two_open_sessions():
    tracker, store, _, history = make_tracker()
    token = encode("S1", "E1")
    barrier = threading.Barrier(12)
    outcomes = []
    lock = threading.Lock()

    def worker(minute: int):
        barrier.wait()
        outcome = tracker.record_scan(token, at(9, minute))
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(m,)) for m in range(0, 60, 5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    sessions = store.list_sessions(KEY)
    assert sum(1 for s in sessions if s.is_open) <= 1
    accepted = [o for o in outcomes if o.accepted]
    assert len(all_history(history)) == len(accepted)
    assert len(sessions) == sum(1 for o in accepted if o.kind == ScanOutcomeKind.CHECKED_IN)
    for s in sessions:
        if not s.is_open:
            assert s.check_out_time > s.check_in_time


def test_voided_session_does_not_block_later_scans():
    tracker, store, _, history = make_tracker()
    token = encode("S1", "E1")
    tracker.record_scan(token, at(9))
    mistyped = tracker.close_session("S1", "E1", at(23), actor="admin-1", reason="typo in checkout")
    with store.transaction(KEY) as tx:
        voided = dataclasses.replace(mistyped, voided=True, void_reason="wrong checkout time")
        tx.save_session(voided)
        history.record(tx, actor="admin-1", change_kind=ChangeKind.ENTRY_VOID, before=mistyped, after=voided)

    outcome = tracker.record_scan(token, at(13))

    assert outcome.kind == ScanOutcomeKind.CHECKED_IN
    assert outcome.session.check_in_time == at(13)
    assert len(store.list_sessions(KEY)) == 2


def test_offset_aware_times_are_stored_as_local_time():
    tracker, store, _, _ = make_tracker()
    token = encode("S1", "E1")
    check_in = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)

    first = tracker.record_scan(token, check_in)
    second = tracker.record_scan(token, check_in + timedelta(hours=1, minutes=30))

    assert first.kind == ScanOutcomeKind.CHECKED_IN
    assert second.kind == ScanOutcomeKind.CHECKED_OUT
    [session] = store.list_sessions(KEY)
    assert session.check_in_time.tzinfo is None
    assert session.check_in_time == check_in.astimezone().replace(tzinfo=None)
    assert session.duration() == timedelta(hours=1, minutes=30)


def test_close_session_accepts_offset_aware_checkout():
    tracker, store, _, _ = make_tracker()
    check_in = datetime(2026, 3, 14, 9, 0, tzinfo=timezone(timedelta(hours=-5)))
    tracker.record_scan(encode("S1", "E1"), check_in)

    closed = tracker.close_session(
        "S1", "E1", check_in + timedelta(hours=2), actor="admin-1", reason="forgot to scan out"
    )

    assert closed.check_out_time.tzinfo is None
    assert closed.duration() == timedelta(hours=2)
