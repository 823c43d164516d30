from typing import Literal

from fastapi import APIRouter, BackgroundTasks, HTTPException
from pydantic import BaseModel

from backend.services.training import get_training_status, schedule_training
from database.db import get_all_students, get_all_teachers, get_person
from face_training.trainer import person_faces_dir

router = APIRouter()


class TrainRequest(BaseModel):
    kind: Literal["student", "teacher"] | None = None
    person_id: int | None = None


def _persons_with_images() -> list[tuple[str, int]]:
    out: list[tuple[str, int]] = []
    for kind, rows in (("student", get_all_students()), ("teacher", get_all_teachers())):
        for r in rows:
            if person_faces_dir(kind, r["id"]).exists():
                out.append((kind, r["id"]))
    return out


@router.get("/train/status")
def train_status():
    return get_training_status()


@router.post("/train/run")
def train_run(background_tasks: BackgroundTasks, payload: TrainRequest | None = None):
    """Retrain one person, or everyone with stored images when no person is given."""
    if payload is not None and payload.kind and payload.person_id is not None:
        if not get_person(payload.kind, payload.person_id):
            raise HTTPException(status_code=404, detail=f"{payload.kind.title()} not found.")
        targets = [(payload.kind, payload.person_id)]
    else:
        targets = _persons_with_images()

    if not targets:
        return {"ok": False, "queued": 0, "message": "No stored face images to train."}

    states = [schedule_training(background_tasks, kind, person_id) for kind, person_id in targets]
    started = "started" in states
    return {
        "ok": True,
        "queued": sum(1 for s in states if s != "already_queued"),
        "message": "Training started" if started else "Training in progress; persons queued",
    }
