import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import numpy as np  # type: ignore

from backend.config import DESCRIPTOR_LENGTH

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = (
    "building_room",
    "course_code",
    "course_year",
    "department",
    "schedule",
    "subject_id",
    "subject_name",
    "teacher_id",
    "teacher_name",
    "year_level",
)


@dataclass
class Person:
    id: Any
    full_name: str
    department: str
    year_level: str | None = None
    face_trained: bool = False
    face_descriptors: list[float] | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Person":
        return cls(
            id=row.get("id"),
            full_name=str(row.get("full_name") or ""),
            department=str(row.get("department") or ""),
            year_level=row.get("year_level"),
            face_trained=bool(row.get("face_trained")),
            face_descriptors=row.get("face_descriptors"),
        )


@dataclass
class ClassSchedule:
    id: Any
    teacher_id: str
    teacher_name: str
    subject_name: str
    department: str
    year_level: str
    subject_id: str = ""
    course_code: str = ""
    course_year: str = ""
    schedule: str = ""
    building_room: str = ""

    @classmethod
    def from_row(cls, row: dict[str, Any], *, schedule_id: Any = None) -> "ClassSchedule":
        return cls(
            id=schedule_id if schedule_id is not None else row.get("id"),
            teacher_id=str(row.get("teacher_id") or ""),
            teacher_name=str(row.get("teacher_name") or ""),
            subject_id=str(row.get("subject_id") or ""),
            subject_name=str(row.get("subject_name") or ""),
            course_code=str(row.get("course_code") or ""),
            department=str(row.get("department") or ""),
            year_level=str(row.get("year_level") or ""),
            course_year=str(row.get("course_year") or ""),
            schedule=str(row.get("schedule") or ""),
            building_room=str(row.get("building_room") or ""),
        )

    def snapshot(self) -> dict[str, str]:
        """Copy embedded in attendance documents; survives later schedule edits."""
        out = {name: str(getattr(self, name) or "") for name in SNAPSHOT_FIELDS}
        if not out["subject_id"] and self.id is not None:
            out["subject_id"] = str(self.id)
        return out


@dataclass
class LabeledDescriptor:
    label: str
    descriptors: list[np.ndarray] = field(default_factory=list)


def _has_descriptors(person: Person) -> bool:
    return bool(person.face_descriptors)


def build_roster(schedule: ClassSchedule, persons: Iterable[Person]) -> list[Person]:
    """Trained persons in the schedule's department and year level."""
    return [
        p
        for p in persons
        if p.department == schedule.department
        and p.year_level == schedule.year_level
        and p.face_trained
        and _has_descriptors(p)
    ]


def to_descriptor(values: Iterable[float]) -> np.ndarray:
    vector = np.asarray(list(values), dtype=np.float64).reshape(-1)
    if vector.size != DESCRIPTOR_LENGTH:
        raise ValueError(f"Descriptor must have {DESCRIPTOR_LENGTH} values, got {vector.size}")
    return vector


def build_gallery(roster: Iterable[Person]) -> list[LabeledDescriptor]:
    # label = display name; two students sharing a name are indistinguishable
    gallery: list[LabeledDescriptor] = []
    for p in roster:
        try:
            vector = to_descriptor(p.face_descriptors or [])
        except ValueError as exc:
            logger.warning("Skipping descriptor of person %s: %s", p.id, exc)
            continue
        gallery.append(LabeledDescriptor(label=p.full_name, descriptors=[vector]))
    return gallery


def label_index(roster: Iterable[Person]) -> dict[str, list[Any]]:
    """name -> person ids; more than one id means the label is ambiguous."""
    out: dict[str, list[Any]] = {}
    for p in roster:
        out.setdefault(p.full_name, []).append(p.id)
    return out
