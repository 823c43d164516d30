from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from database.db import (
    add_activity_log,
    add_class_schedule,
    delete_class_schedule,
    get_all_class_schedules,
    get_class_schedule_by_id,
)

router = APIRouter()


class ScheduleCreate(BaseModel):
    teacher_id: str = ""
    teacher_name: str
    subject_id: str = ""
    subject_name: str
    course_code: str = ""
    department: str
    year_level: str
    course_year: str = ""
    schedule: str = ""
    building_room: str = ""


@router.get("/schedules")
def schedules():
    return get_all_class_schedules()


@router.get("/schedules/{schedule_id}")
def schedule_detail(schedule_id: int):
    row = get_class_schedule_by_id(schedule_id)
    if not row:
        raise HTTPException(status_code=404, detail="Class schedule not found.")
    return row


@router.post("/schedules")
def create_schedule(payload: ScheduleCreate):
    data = {k: v.strip() for k, v in payload.model_dump().items()}
    if not data["subject_name"] or not data["department"] or not data["year_level"]:
        raise HTTPException(status_code=400, detail="Subject, department and year level are required.")

    new_id = add_class_schedule(data)
    add_activity_log("Class Schedule Added", f"{data['subject_name']} ({data['department']} {data['year_level']})")
    return {"id": new_id, **data}


@router.delete("/schedules/{schedule_id}")
def remove_schedule(schedule_id: int):
    # past attendance documents keep their own snapshot of the schedule
    if not delete_class_schedule(schedule_id):
        raise HTTPException(status_code=404, detail="Class schedule not found.")
    return {"ok": True, "id": schedule_id}
