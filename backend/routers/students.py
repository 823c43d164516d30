import shutil

from fastapi import APIRouter, BackgroundTasks, File, HTTPException, UploadFile
from pydantic import BaseModel

from backend.services.training import save_face_images, schedule_training
from database.db import (
    add_activity_log,
    add_student,
    delete_student,
    get_student_by_id,
    list_students,
)
from face_training.trainer import person_faces_dir

router = APIRouter()


class StudentCreate(BaseModel):
    full_name: str
    department: str
    year_level: str
    block: str | None = None


def _public(row: dict) -> dict:
    # descriptors stay server-side
    return {k: v for k, v in row.items() if k != "face_descriptors"}


@router.get("/students")
def students(department: str | None = None, year_level: str | None = None):
    return [_public(r) for r in list_students(department, year_level)]


@router.get("/students/{student_id}")
def student_detail(student_id: int):
    row = get_student_by_id(student_id)
    if not row:
        raise HTTPException(status_code=404, detail="Student not found.")
    return _public(row)


@router.post("/students")
def create_student(payload: StudentCreate):
    full_name = payload.full_name.strip()
    department = payload.department.strip()
    year_level = payload.year_level.strip()
    block = payload.block.strip() if payload.block else None

    if not full_name or not department or not year_level:
        raise HTTPException(status_code=400, detail="Name, department and year level are required.")

    new_id = add_student(full_name, department, year_level, block)
    add_activity_log("Student Added", f"{full_name} ({department} {year_level})")
    return {
        "id": new_id,
        "full_name": full_name,
        "department": department,
        "year_level": year_level,
        "block": block,
        "face_trained": False,
    }


@router.delete("/students/{student_id}")
def remove_student(student_id: int):
    row = get_student_by_id(student_id)
    if not row:
        raise HTTPException(status_code=404, detail="Student not found.")
    delete_student(student_id)

    faces_dir = person_faces_dir("student", student_id)
    if faces_dir.exists():
        shutil.rmtree(faces_dir)

    add_activity_log("Student Deleted", row["full_name"])
    return {"ok": True, "id": student_id}


# Save uploaded face images to assets/faces/student/<id>/ and retrain
@router.post("/students/{student_id}/faces")
async def upload_faces(
    student_id: int,
    background_tasks: BackgroundTasks,
    files: list[UploadFile] = File(...),
):
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded.")

    if not get_student_by_id(student_id):
        raise HTTPException(status_code=404, detail="Student not found.")

    saved = save_face_images("student", student_id, files)
    if saved == 0:
        raise HTTPException(status_code=400, detail="No valid images. Upload JPG/PNG only.")

    training = schedule_training(background_tasks, "student", student_id)
    return {
        "student_id": student_id,
        "saved": saved,
        "folder": str(person_faces_dir("student", student_id)),
        "training": training,
    }
