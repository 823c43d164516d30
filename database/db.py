import json
import sqlite3
from datetime import datetime
from typing import Any, Literal

from backend.config import DB_PATH

PersonKind = Literal["student", "teacher"]

PERSON_TABLES: dict[str, str] = {
    "student": "students",
    "teacher": "teachers",
}

SCHEDULE_FIELDS = (
    "teacher_id",
    "teacher_name",
    "subject_id",
    "subject_name",
    "course_code",
    "department",
    "year_level",
    "course_year",
    "schedule",
    "building_room",
)

# Columns a session save is allowed to touch on an existing document.
ATTENDANCE_UPDATE_FIELDS = (
    "attendance_records",
    "present_count",
    "absent_count",
    "late_count",
    "total_students",
)


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        full_name TEXT NOT NULL,
        department TEXT NOT NULL,
        year_level TEXT NOT NULL,
        block TEXT,
        face_trained INTEGER NOT NULL DEFAULT 0,
        face_descriptors TEXT,           -- JSON array of floats
        training_date TEXT,              -- ISO timestamp
        training_images_count INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS teachers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        full_name TEXT NOT NULL,
        department TEXT,
        email TEXT UNIQUE,
        face_trained INTEGER NOT NULL DEFAULT 0,
        face_descriptors TEXT,
        training_date TEXT,
        training_images_count INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS class_schedules (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        teacher_id TEXT NOT NULL,
        teacher_name TEXT NOT NULL,
        subject_id TEXT,
        subject_name TEXT NOT NULL,
        course_code TEXT,
        department TEXT NOT NULL,
        year_level TEXT NOT NULL,
        course_year TEXT,               -- e.g. BSIT 4D
        schedule TEXT,                  -- e.g. MWF 8:00-9:00 AM
        building_room TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    # One document per (schedule, date) session; snapshot + records are JSON.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS class_attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        class_schedule TEXT NOT NULL,
        attendance_records TEXT NOT NULL,
        present_count INTEGER NOT NULL DEFAULT 0,
        absent_count INTEGER NOT NULL DEFAULT 0,
        late_count INTEGER NOT NULL DEFAULT 0,
        total_students INTEGER NOT NULL DEFAULT 0,
        attendance_date TEXT NOT NULL,  -- YYYY-MM-DD
        created_by TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS activity_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        action TEXT NOT NULL,
        user TEXT,
        details TEXT,
        timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_students_roster ON students (department, year_level)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_class_attendance_date ON class_attendance (attendance_date)"
    )

    conn.commit()
    conn.close()


def _load_descriptors(raw: str | None) -> list[float] | None:
    if not raw:
        return None
    try:
        values = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(values, list) or not values:
        return None
    return [float(v) for v in values]


def _person_table(kind: str) -> str:
    try:
        return PERSON_TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown person kind: {kind}") from None


# -----------------------------
# Students
# -----------------------------
def _student_from_row(row) -> dict[str, Any]:
    return {
        "id": row[0],
        "full_name": row[1],
        "department": row[2],
        "year_level": row[3],
        "block": row[4],
        "face_trained": bool(row[5]),
        "face_descriptors": _load_descriptors(row[6]),
        "training_date": row[7],
        "training_images_count": row[8],
        "created_at": row[9],
    }


_STUDENT_COLUMNS = """
    id, full_name, department, year_level, block, face_trained,
    face_descriptors, training_date, training_images_count, created_at
"""


def add_student(full_name: str, department: str, year_level: str, block: str | None = None) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO students (full_name, department, year_level, block)
        VALUES (?, ?, ?, ?)
    """, (full_name, department, year_level, block))
    student_id = cur.lastrowid
    conn.commit()
    conn.close()
    return student_id


def get_all_students() -> list[dict[str, Any]]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_STUDENT_COLUMNS}
        FROM students
        ORDER BY full_name
    """)
    rows = cur.fetchall()
    conn.close()
    return [_student_from_row(r) for r in rows]


def get_student_by_id(student_id: int) -> dict[str, Any] | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_STUDENT_COLUMNS}
        FROM students
        WHERE id = ?
    """, (student_id,))
    row = cur.fetchone()
    conn.close()
    return _student_from_row(row) if row else None


def list_students(department: str | None = None, year_level: str | None = None) -> list[dict[str, Any]]:
    """
    Person store query used to build a class roster.
    Filters are exact matches; ``None`` means "any".
    """
    where = ["1=1"]
    params: list[Any] = []
    if department is not None:
        where.append("department = ?")
        params.append(department)
    if year_level is not None:
        where.append("year_level = ?")
        params.append(year_level)

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_STUDENT_COLUMNS}
        FROM students
        WHERE {" AND ".join(where)}
        ORDER BY full_name, id
        """,
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return [_student_from_row(r) for r in rows]


def delete_student(student_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM students WHERE id = ?", (student_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


# -----------------------------
# Teachers
# -----------------------------
def _teacher_from_row(row) -> dict[str, Any]:
    return {
        "id": row[0],
        "full_name": row[1],
        "department": row[2],
        "email": row[3],
        "face_trained": bool(row[4]),
        "face_descriptors": _load_descriptors(row[5]),
        "training_date": row[6],
        "training_images_count": row[7],
        "created_at": row[8],
    }


_TEACHER_COLUMNS = """
    id, full_name, department, email, face_trained,
    face_descriptors, training_date, training_images_count, created_at
"""


def get_all_teachers() -> list[dict[str, Any]]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_TEACHER_COLUMNS}
        FROM teachers
        ORDER BY full_name
    """)
    rows = cur.fetchall()
    conn.close()
    return [_teacher_from_row(r) for r in rows]


def add_teacher(full_name: str, department: str, email: str) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO teachers (full_name, department, email)
        VALUES (?, ?, ?)
    """, (full_name, department, email))
    teacher_id = cur.lastrowid
    conn.commit()
    conn.close()
    return teacher_id


def get_teacher_by_id(teacher_id: int) -> dict[str, Any] | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_TEACHER_COLUMNS}
        FROM teachers
        WHERE id = ?
    """, (teacher_id,))
    row = cur.fetchone()
    conn.close()
    return _teacher_from_row(row) if row else None


def get_person(kind: PersonKind, person_id: int) -> dict[str, Any] | None:
    if kind == "student":
        return get_student_by_id(person_id)
    if kind == "teacher":
        return get_teacher_by_id(person_id)
    raise ValueError(f"Unknown person kind: {kind}")


def set_face_descriptors(
    kind: PersonKind,
    person_id: int,
    descriptors: list[float],
    *,
    images_count: int,
    training_date: str | None = None,
) -> bool:
    """Overwrite the trained descriptor of a student or teacher."""
    table = _person_table(kind)
    trained_at = training_date or datetime.now().isoformat(timespec="seconds")

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        UPDATE {table}
        SET face_trained = 1,
            face_descriptors = ?,
            training_date = ?,
            training_images_count = ?,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
        """,
        (json.dumps([float(v) for v in descriptors]), trained_at, int(images_count), person_id),
    )
    updated = cur.rowcount > 0
    conn.commit()
    conn.close()
    return updated


# -----------------------------
# Class schedules
# -----------------------------
def _schedule_from_row(row) -> dict[str, Any]:
    out: dict[str, Any] = {"id": row[0]}
    for idx, field in enumerate(SCHEDULE_FIELDS, start=1):
        out[field] = row[idx] if row[idx] is not None else ""
    return out


_SCHEDULE_COLUMNS = "id, " + ", ".join(SCHEDULE_FIELDS)


def add_class_schedule(data: dict[str, Any]) -> int:
    values = [str(data.get(field) or "") for field in SCHEDULE_FIELDS]
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        INSERT INTO class_schedules ({", ".join(SCHEDULE_FIELDS)})
        VALUES ({", ".join("?" for _ in SCHEDULE_FIELDS)})
        """,
        values,
    )
    schedule_id = cur.lastrowid
    conn.commit()
    conn.close()
    return schedule_id


def get_all_class_schedules() -> list[dict[str, Any]]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_SCHEDULE_COLUMNS}
        FROM class_schedules
        ORDER BY subject_name, id
    """)
    rows = cur.fetchall()
    conn.close()
    return [_schedule_from_row(r) for r in rows]


def get_class_schedule_by_id(schedule_id: int) -> dict[str, Any] | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_SCHEDULE_COLUMNS}
        FROM class_schedules
        WHERE id = ?
    """, (schedule_id,))
    row = cur.fetchone()
    conn.close()
    return _schedule_from_row(row) if row else None


def delete_class_schedule(schedule_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM class_schedules WHERE id = ?", (schedule_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


# -----------------------------
# Class attendance documents
# -----------------------------
_ATTENDANCE_COLUMNS = """
    id, class_schedule, attendance_records, present_count, absent_count,
    late_count, total_students, attendance_date, created_by, created_at
"""


def _attendance_from_row(row) -> dict[str, Any]:
    return {
        "id": row[0],
        "class_schedule": json.loads(row[1]) if row[1] else {},
        "attendance_records": json.loads(row[2]) if row[2] else [],
        "present_count": int(row[3] or 0),
        "absent_count": int(row[4] or 0),
        "late_count": int(row[5] or 0),
        "total_students": int(row[6] or 0),
        "attendance_date": row[7],
        "created_by": row[8],
        "created_at": row[9],
    }


def add_class_attendance(doc: dict[str, Any]) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO class_attendance (
            class_schedule,
            attendance_records,
            present_count,
            absent_count,
            late_count,
            total_students,
            attendance_date,
            created_by
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            json.dumps(doc["class_schedule"]),
            json.dumps(doc["attendance_records"]),
            int(doc.get("present_count", 0)),
            int(doc.get("absent_count", 0)),
            int(doc.get("late_count", 0)),
            int(doc.get("total_students", 0)),
            doc["attendance_date"],
            doc.get("created_by"),
        ),
    )
    doc_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    return doc_id


def update_class_attendance(attendance_id: int, fields: dict[str, Any]) -> bool:
    """
    Partial update of a session document. Only the record set and counts may
    change; schedule snapshot and creation metadata are never written here.
    """
    unknown = set(fields) - set(ATTENDANCE_UPDATE_FIELDS)
    if unknown:
        raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
    if not fields:
        return False

    assignments: list[str] = []
    params: list[Any] = []
    for key in ATTENDANCE_UPDATE_FIELDS:
        if key not in fields:
            continue
        assignments.append(f"{key} = ?")
        value = fields[key]
        params.append(json.dumps(value) if key == "attendance_records" else int(value))
    params.append(attendance_id)

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        UPDATE class_attendance
        SET {", ".join(assignments)}
        WHERE id = ?
        """,
        params,
    )
    updated = cur.rowcount > 0
    conn.commit()
    conn.close()
    return updated


def get_class_attendance_by_id(attendance_id: int) -> dict[str, Any] | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"""
        SELECT {_ATTENDANCE_COLUMNS}
        FROM class_attendance
        WHERE id = ?
    """, (attendance_id,))
    row = cur.fetchone()
    conn.close()
    return _attendance_from_row(row) if row else None


def get_class_attendance(date: str | None = None, schedule_id: str | None = None) -> list[dict[str, Any]]:
    where = ["1=1"]
    params: list[Any] = []
    if date:
        where.append("attendance_date = ?")
        params.append(date)
    if schedule_id:
        where.append("json_extract(class_schedule, '$.subject_id') = ?")
        params.append(str(schedule_id))

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_ATTENDANCE_COLUMNS}
        FROM class_attendance
        WHERE {" AND ".join(where)}
        ORDER BY created_at DESC, id DESC
        """,
        params,
    )
    rows = cur.fetchall()
    conn.close()
    return [_attendance_from_row(r) for r in rows]


def delete_class_attendance(attendance_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM class_attendance WHERE id = ?", (attendance_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


class ClassAttendanceStore:
    """Session document store used by the attendance reconciler."""

    def create(self, doc: dict[str, Any]) -> int:
        return add_class_attendance(doc)

    def update(self, attendance_id: int, fields: dict[str, Any]) -> bool:
        return update_class_attendance(attendance_id, fields)

    def get(self, attendance_id: int) -> dict[str, Any] | None:
        return get_class_attendance_by_id(attendance_id)


# -----------------------------
# Activity logs
# -----------------------------
def add_activity_log(action: str, details: str = "", user: str = "system") -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO activity_logs (action, user, details)
        VALUES (?, ?, ?)
    """, (action, user, details))
    log_id = cur.lastrowid
    conn.commit()
    conn.close()
    return log_id


def get_activity_logs(limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    safe_limit = max(1, min(int(limit), 500))
    safe_offset = max(0, int(offset))

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, action, user, details, timestamp
        FROM activity_logs
        ORDER BY timestamp DESC, id DESC
        LIMIT ?
        OFFSET ?
        """,
        (safe_limit, safe_offset),
    )
    rows = cur.fetchall()
    conn.close()
    return [
        {
            "id": r[0],
            "action": r[1],
            "user": r[2],
            "details": r[3],
            "timestamp": r[4],
        }
        for r in rows
    ]


# -----------------------------
# Resets
# -----------------------------
def clear_all_tables():
    conn = connect_db()
    cur = conn.cursor()

    cur.execute("DELETE FROM class_attendance;")
    cur.execute("DELETE FROM class_schedules;")
    cur.execute("DELETE FROM students;")
    cur.execute("DELETE FROM teachers;")
    cur.execute("DELETE FROM activity_logs;")

    cur.execute("DELETE FROM sqlite_sequence WHERE name='class_attendance';")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='class_schedules';")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='students';")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='teachers';")
    cur.execute("DELETE FROM sqlite_sequence WHERE name='activity_logs';")

    conn.commit()
    conn.close()
