import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Protocol

from backend.errors import PersistenceError, PreconditionError
from backend.services.gallery import ClassSchedule
from backend.services.tracker import AttendanceRecord, AttendanceStats, compute_stats

logger = logging.getLogger(__name__)

# Distinguishes camera-captured records from manually entered attendance.
ATTENDANCE_TYPE_FACE = "face"


class AttendanceStore(Protocol):
    def create(self, doc: dict[str, Any]) -> Any: ...

    def update(self, attendance_id: Any, fields: dict[str, Any]) -> bool: ...

    def get(self, attendance_id: Any) -> dict[str, Any] | None: ...


@dataclass(frozen=True)
class SaveResult:
    attendance_id: Any
    created: bool
    stats: AttendanceStats
    attendance_date: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "attendance_id": self.attendance_id,
            "created": self.created,
            "attendance_date": self.attendance_date,
            **_count_fields(self.stats),
        }


def serialize_record(record: AttendanceRecord) -> dict[str, Any]:
    return {
        "student_id": record.student_id,
        "student_name": record.student_name,
        "status": record.status,
        "timestamp": record.timestamp.isoformat(timespec="seconds"),
        "attendance_type": ATTENDANCE_TYPE_FACE,
        "confidence": record.confidence if record.confidence is not None else 0.0,
    }


def _count_fields(stats: AttendanceStats) -> dict[str, int]:
    return {
        "present_count": stats.present,
        "absent_count": stats.absent,
        "late_count": stats.late,
        "total_students": stats.total,
    }


def save_attendance(
    schedule: ClassSchedule | None,
    records: Iterable[AttendanceRecord],
    store: AttendanceStore,
    *,
    attendance_id: Any = None,
    today: date | None = None,
) -> SaveResult:
    """
    Write the session's records as one document.

    With ``attendance_id`` the existing document gets only its records and
    counts replaced; otherwise a new document embedding a schedule snapshot
    is created. Store failures are raised as PersistenceError and leave the
    caller's in-memory state alone.
    """
    if schedule is None:
        raise PreconditionError("Please select a class schedule first.")
    record_list = list(records)
    if not record_list:
        raise PreconditionError("No attendance records to save. Please start scanning first.")

    stats = compute_stats(record_list)
    formatted = [serialize_record(r) for r in record_list]

    if attendance_id is not None:
        fields = {"attendance_records": formatted, **_count_fields(stats)}
        try:
            updated = store.update(attendance_id, fields)
        except Exception as exc:
            logger.error("Updating attendance %s failed: %s", attendance_id, exc)
            raise PersistenceError(f"Failed to update attendance: {exc}") from exc
        if not updated:
            raise PersistenceError(f"Attendance document {attendance_id} not found.")
        logger.info("Attendance %s updated (%s)", attendance_id, stats.as_dict())
        return SaveResult(attendance_id=attendance_id, created=False, stats=stats)

    # stored as the UTC calendar day, like the created_at timestamps
    attendance_date = (today or datetime.now(timezone.utc).date()).isoformat()
    doc = {
        "class_schedule": schedule.snapshot(),
        "attendance_records": formatted,
        **_count_fields(stats),
        "attendance_date": attendance_date,
        "created_by": schedule.teacher_id,
    }
    try:
        new_id = store.create(doc)
    except Exception as exc:
        logger.error("Creating attendance for %s failed: %s", schedule.subject_name, exc)
        raise PersistenceError(f"Failed to save attendance: {exc}") from exc
    logger.info("Attendance %s created for %s on %s", new_id, schedule.subject_name, attendance_date)
    return SaveResult(attendance_id=new_id, created=True, stats=stats, attendance_date=attendance_date)
