import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable, Literal

from backend.services.gallery import Person

logger = logging.getLogger(__name__)

AttendanceStatus = Literal["absent", "present", "late"]
ATTENDANCE_STATUSES: tuple[str, ...] = ("absent", "present", "late")


@dataclass
class AttendanceRecord:
    student_id: Any
    student_name: str
    status: AttendanceStatus
    timestamp: datetime
    confidence: float | None = None  # set only once a match occurs

    def as_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class AttendanceStats:
    present: int
    absent: int
    late: int
    total: int

    def as_dict(self) -> dict[str, int]:
        return {
            "present": self.present,
            "absent": self.absent,
            "late": self.late,
            "total": self.total,
        }


class AttendanceTracker:
    """In-memory roster for one scanning session."""

    def __init__(self):
        self._records: dict[Any, AttendanceRecord] = {}
        self._lock = threading.Lock()

    def reset(self, roster: Iterable[Person], now: datetime | None = None) -> None:
        started_at = now or datetime.now()
        with self._lock:
            self._records = {
                p.id: AttendanceRecord(
                    student_id=p.id,
                    student_name=p.full_name,
                    status="absent",
                    timestamp=started_at,
                )
                for p in roster
            }

    def mark(
        self,
        name: str,
        confidence: float | None,
        status: AttendanceStatus = "present",
        now: datetime | None = None,
    ) -> list[AttendanceRecord]:
        """
        First match wins: only records still ``absent`` move, so repeated
        detections across frames leave the first confidence in place.
        Names not on the roster are ignored. Returns the records that changed.
        """
        if status == "absent":
            return []
        marked_at = now or datetime.now()
        changed: list[AttendanceRecord] = []
        with self._lock:
            for key, record in self._records.items():
                if record.student_name != name or record.status != "absent":
                    continue
                updated = replace(record, status=status, timestamp=marked_at, confidence=confidence)
                self._records[key] = updated
                changed.append(updated)
        for record in changed:
            logger.info(
                "Marked %s %s (confidence=%s)",
                record.student_name,
                record.status,
                "n/a" if confidence is None else f"{confidence:.2f}",
            )
        return changed

    def set_status(self, student_id: Any, status: AttendanceStatus, now: datetime | None = None) -> AttendanceRecord:
        """Manual override, e.g. marking a student late. Raises KeyError if not on the roster."""
        if status not in ATTENDANCE_STATUSES:
            raise ValueError(f"Invalid status: {status}")
        with self._lock:
            record = self._records[student_id]
            if status == "absent":
                updated = replace(record, status="absent", confidence=None)
            else:
                updated = replace(record, status=status, timestamp=now or datetime.now())
            self._records[student_id] = updated
            return updated

    def records(self) -> list[AttendanceRecord]:
        with self._lock:
            return list(self._records.values())

    def get(self, student_id: Any) -> AttendanceRecord | None:
        with self._lock:
            return self._records.get(student_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def stats(self) -> AttendanceStats:
        return compute_stats(self.records())


def compute_stats(records: Iterable[AttendanceRecord]) -> AttendanceStats:
    """Counts by status, recomputed from scratch on every call."""
    present = absent = late = total = 0
    for r in records:
        total += 1
        if r.status == "present":
            present += 1
        elif r.status == "absent":
            absent += 1
        elif r.status == "late":
            late += 1
    return AttendanceStats(present=present, absent=absent, late=late, total=total)
