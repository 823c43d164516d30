from datetime import datetime

import pytest

from backend.services.tracker import AttendanceTracker, compute_stats
from fakes import descriptor, make_person

T0 = datetime(2026, 3, 2, 9, 0, 0)
T1 = datetime(2026, 3, 2, 9, 5, 0)
T2 = datetime(2026, 3, 2, 9, 10, 0)


@pytest.fixture()
def tracker():
    t = AttendanceTracker()
    t.reset(
        [make_person(1, "Alice", vector=descriptor(0.0)), make_person(2, "Bob", vector=descriptor(1.0))],
        now=T0,
    )
    return t


def test_reset_starts_everyone_absent(tracker):
    records = tracker.records()
    assert [r.status for r in records] == ["absent", "absent"]
    assert all(r.timestamp == T0 and r.confidence is None for r in records)


def test_first_match_wins(tracker):
    changed = tracker.mark("Alice", 0.7, now=T1)
    assert [r.student_id for r in changed] == [1]

    assert tracker.mark("Alice", 0.95, now=T2) == []
    record = tracker.get(1)
    assert record.status == "present"
    assert record.confidence == 0.7
    assert record.timestamp == T1


def test_unknown_names_are_ignored(tracker):
    assert tracker.mark("Mallory", 0.9) == []
    assert tracker.stats().present == 0


def test_shared_name_marks_every_absent_holder():
    t = AttendanceTracker()
    t.reset([make_person(1, "Alex", vector=descriptor(0.0)), make_person(2, "Alex", vector=descriptor(1.0))])
    assert len(t.mark("Alex", 0.8)) == 2


def test_manual_override(tracker):
    tracker.mark("Alice", 0.7, now=T1)
    late = tracker.set_status(2, "late", now=T2)
    assert late.status == "late" and late.timestamp == T2

    absent = tracker.set_status(1, "absent")
    assert absent.status == "absent"
    assert absent.confidence is None

    with pytest.raises(KeyError):
        tracker.set_status(99, "present")
    with pytest.raises(ValueError):
        tracker.set_status(1, "excused")


def test_stats_always_add_up(tracker):
    tracker.mark("Alice", 0.7)
    tracker.set_status(2, "late")
    stats = tracker.stats()
    assert stats.as_dict() == {"present": 1, "absent": 0, "late": 1, "total": 2}
    assert stats.present + stats.absent + stats.late == stats.total


def test_reset_drops_previous_roster(tracker):
    tracker.mark("Alice", 0.7)
    tracker.reset([make_person(3, "Carol", vector=descriptor(0.0))])
    assert [r.student_id for r in tracker.records()] == [3]
    assert tracker.get(1) is None
    assert len(tracker) == 1


def test_compute_stats_empty():
    assert compute_stats([]).as_dict() == {"present": 0, "absent": 0, "late": 0, "total": 0}
