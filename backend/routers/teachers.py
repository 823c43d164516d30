import sqlite3

from fastapi import APIRouter, BackgroundTasks, File, HTTPException, UploadFile
from pydantic import BaseModel

from backend.services.training import save_face_images, schedule_training
from database.db import add_activity_log, add_teacher, get_all_teachers, get_teacher_by_id
from face_training.trainer import person_faces_dir

router = APIRouter()


class TeacherCreate(BaseModel):
    full_name: str
    department: str
    email: str


def _public(row: dict) -> dict:
    return {
        "id": row["id"],
        "full_name": row["full_name"],
        "department": row["department"],
        "email": row["email"],
        "face_trained": row["face_trained"],
        "created_at": row["created_at"],
    }


@router.get("/teachers")
def teachers():
    return [_public(r) for r in get_all_teachers()]


@router.get("/teachers/{teacher_id}")
def teacher_detail(teacher_id: int):
    row = get_teacher_by_id(teacher_id)
    if not row:
        raise HTTPException(status_code=404, detail="Teacher not found.")
    return _public(row)


@router.post("/teachers")
def create_teacher(payload: TeacherCreate):
    full_name = payload.full_name.strip()
    department = payload.department.strip()
    email = payload.email.strip().lower()

    if not full_name or not department or not email:
        raise HTTPException(status_code=400, detail="All fields are required.")

    try:
        new_id = add_teacher(full_name, department, email)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Email already exists.")

    add_activity_log("Teacher Added", f"{full_name} <{email}>")
    return {
        "id": new_id,
        "full_name": full_name,
        "department": department,
        "email": email,
    }


@router.post("/teachers/{teacher_id}/faces")
async def upload_faces(
    teacher_id: int,
    background_tasks: BackgroundTasks,
    files: list[UploadFile] = File(...),
):
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded.")

    if not get_teacher_by_id(teacher_id):
        raise HTTPException(status_code=404, detail="Teacher not found.")

    saved = save_face_images("teacher", teacher_id, files)
    if saved == 0:
        raise HTTPException(status_code=400, detail="No valid images. Upload JPG/PNG only.")

    training = schedule_training(background_tasks, "teacher", teacher_id)
    return {
        "teacher_id": teacher_id,
        "saved": saved,
        "folder": str(person_faces_dir("teacher", teacher_id)),
        "training": training,
    }
