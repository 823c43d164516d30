import logging
from typing import Any

import cv2  # type: ignore
import numpy as np  # type: ignore
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel

from backend.services.gallery import ClassSchedule, Person
from backend.services.session import AttendanceSession, get_attendance_session
from backend.services.tracker import AttendanceStatus
from database.db import (
    ClassAttendanceStore,
    add_activity_log,
    delete_class_attendance,
    get_class_attendance,
    get_class_attendance_by_id,
    get_class_schedule_by_id,
    list_students,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class SessionSelect(BaseModel):
    schedule_id: int | None = None
    attendance_id: int | None = None


class StatusUpdate(BaseModel):
    status: AttendanceStatus


def _class_persons(department: str, year_level: str) -> list[Person]:
    return [Person.from_row(r) for r in list_students(department, year_level)]


# -----------------------------
# Live session
# -----------------------------
@router.get("/attendance/session")
def session_state(session: AttendanceSession = Depends(get_attendance_session)):
    return session.snapshot()


@router.post("/attendance/session")
def select_session(payload: SessionSelect, session: AttendanceSession = Depends(get_attendance_session)):
    """Pick a schedule for a new document, or reopen a saved one by id."""
    if payload.attendance_id is not None:
        doc = get_class_attendance_by_id(payload.attendance_id)
        if not doc:
            raise HTTPException(status_code=404, detail="Attendance record not found.")
        snapshot: dict[str, Any] = doc["class_schedule"]
        persons = _class_persons(snapshot.get("department", ""), snapshot.get("year_level", ""))
        session.resume(doc, persons)
        return session.snapshot()

    if payload.schedule_id is None:
        raise HTTPException(status_code=400, detail="schedule_id or attendance_id is required.")

    row = get_class_schedule_by_id(payload.schedule_id)
    if not row:
        raise HTTPException(status_code=404, detail="Class schedule not found.")
    schedule = ClassSchedule.from_row(row)
    session.select_schedule(schedule, _class_persons(schedule.department, schedule.year_level))
    return session.snapshot()


@router.post("/attendance/session/start")
def start_session(session: AttendanceSession = Depends(get_attendance_session)):
    started = session.start_scanning()
    return {
        "ok": True,
        "started": started,
        "message": "Scanning started" if started else "Already scanning",
        "camera_index": session.camera.index,
    }


@router.post("/attendance/session/stop")
def stop_session(session: AttendanceSession = Depends(get_attendance_session)):
    stopped = session.stop_scanning()
    return {"ok": True, "stopped": stopped, "stats": session.stats().as_dict()}


@router.post("/attendance/session/switch-camera")
def switch_camera(session: AttendanceSession = Depends(get_attendance_session)):
    index = session.switch_camera()
    return {"ok": True, "camera_index": index, "scanning": session.is_scanning}


@router.post("/attendance/session/frame")
async def submit_frame(
    file: UploadFile = File(...),
    session: AttendanceSession = Depends(get_attendance_session),
):
    if file.content_type not in ("image/jpeg", "image/png"):
        raise HTTPException(status_code=400, detail="Upload JPG/PNG only.")

    data = await file.read()
    img_array = np.frombuffer(data, np.uint8)
    frame = cv2.imdecode(img_array, cv2.IMREAD_COLOR)

    if frame is None:
        raise HTTPException(status_code=400, detail="Invalid image data.")

    result = session.submit_frame(frame)
    return {**result.as_dict(), "stats": session.stats().as_dict()}


@router.patch("/attendance/session/records/{student_id}")
def update_record(
    student_id: int,
    payload: StatusUpdate,
    session: AttendanceSession = Depends(get_attendance_session),
):
    try:
        record = session.set_status(student_id, payload.status)
    except KeyError:
        raise HTTPException(status_code=404, detail="Student is not on this class roster.")
    return {"record": record.as_dict(), "stats": session.stats().as_dict()}


@router.post("/attendance/session/save")
def save_session(session: AttendanceSession = Depends(get_attendance_session)):
    result = session.save(ClassAttendanceStore())
    subject = session.schedule.subject_name if session.schedule else ""
    add_activity_log(
        "Attendance Saved" if result.created else "Attendance Updated",
        f"{subject}: {result.stats.present} present, {result.stats.late} late, "
        f"{result.stats.absent} absent",
    )
    return {
        "ok": True,
        "message": "Attendance saved successfully!" if result.created else "Attendance updated successfully!",
        **result.as_dict(),
    }


@router.delete("/attendance/session")
def close_session(session: AttendanceSession = Depends(get_attendance_session)):
    session.dispose()
    return {"ok": True}


# -----------------------------
# Saved documents
# -----------------------------
@router.get("/attendance")
def attendance(date: str | None = None, schedule_id: str | None = None):
    return get_class_attendance(date=date, schedule_id=schedule_id)


@router.get("/attendance/{attendance_id}")
def attendance_detail(attendance_id: int):
    doc = get_class_attendance_by_id(attendance_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Attendance record not found.")
    return doc


@router.delete("/attendance/{attendance_id}")
def remove_attendance(attendance_id: int, session: AttendanceSession = Depends(get_attendance_session)):
    if not delete_class_attendance(attendance_id):
        raise HTTPException(status_code=404, detail="Attendance record not found.")
    session.forget_document(attendance_id)
    add_activity_log("Attendance Deleted", f"Attendance {attendance_id}")
    return {"ok": True, "id": attendance_id}
