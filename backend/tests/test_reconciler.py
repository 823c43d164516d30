from datetime import date, datetime, timezone

import pytest

import backend.services.reconciler as reconciler
from backend.errors import PersistenceError, PreconditionError
from backend.services.reconciler import save_attendance, serialize_record
from backend.services.tracker import AttendanceRecord
from fakes import FakeStore, make_schedule

STAMP = datetime(2026, 3, 2, 9, 5, 0)


def _records():
    return [
        AttendanceRecord(student_id=1, student_name="Alice", status="present", timestamp=STAMP, confidence=0.7),
        AttendanceRecord(student_id=2, student_name="Bob", status="absent", timestamp=STAMP),
        AttendanceRecord(student_id=3, student_name="Carol", status="late", timestamp=STAMP),
    ]


def test_create_embeds_schedule_snapshot():
    store = FakeStore()
    result = save_attendance(make_schedule(), _records(), store, today=date(2026, 3, 2))

    assert result.created is True
    assert result.attendance_id == 1
    assert len(store.created) == 1
    doc = store.created[0]
    assert doc["class_schedule"]["subject_name"] == "Data Structures"
    assert doc["class_schedule"]["subject_id"] == "7"
    assert doc["attendance_date"] == "2026-03-02"
    assert doc["created_by"] == "t-1"
    assert (doc["present_count"], doc["absent_count"], doc["late_count"], doc["total_students"]) == (1, 1, 1, 3)
    assert [r["attendance_type"] for r in doc["attendance_records"]] == ["face"] * 3


def test_update_touches_records_and_counts_only():
    store = FakeStore()
    result = save_attendance(make_schedule(), _records(), store, attendance_id=12)

    assert result.created is False
    assert store.created == []
    (doc_id, fields), = store.updates
    assert doc_id == 12
    assert set(fields) == {"attendance_records", "present_count", "absent_count", "late_count", "total_students"}


def test_missing_confidence_serializes_as_zero():
    out = serialize_record(_records()[1])
    assert out["confidence"] == 0.0
    assert out["timestamp"] == "2026-03-02T09:05:00"


def test_preconditions():
    with pytest.raises(PreconditionError):
        save_attendance(None, _records(), FakeStore())
    with pytest.raises(PreconditionError):
        save_attendance(make_schedule(), [], FakeStore())


def test_store_failures_become_persistence_errors():
    with pytest.raises(PersistenceError):
        save_attendance(make_schedule(), _records(), FakeStore(fail=True))
    with pytest.raises(PersistenceError):
        save_attendance(make_schedule(), _records(), FakeStore(fail=True), attendance_id=3)


def test_update_of_missing_document_fails():
    with pytest.raises(PersistenceError):
        save_attendance(make_schedule(), _records(), FakeStore(update_result=False), attendance_id=404)


def test_default_attendance_date_is_the_utc_day(monkeypatch):
    seen = []

    class LateEvening(datetime):
        @classmethod
        def now(cls, tz=None):
            seen.append(tz)
            # still March 2 in UTC, already March 3 east of Greenwich
            return datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc)

    monkeypatch.setattr(reconciler, "datetime", LateEvening)
    result = save_attendance(make_schedule(), _records(), FakeStore())

    assert result.attendance_date == "2026-03-02"
    assert seen == [timezone.utc]
