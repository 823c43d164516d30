import shutil

from fastapi import APIRouter, Depends, Query

from backend.config import FACES_DIR
from backend.services.session import AttendanceSession, get_attendance_session
from backend.services.training import reset_training_status
from database.db import add_activity_log, clear_all_tables, get_activity_logs

router = APIRouter()


@router.get("/activity-logs")
def activity_logs(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    return {"rows": get_activity_logs(limit=limit, offset=offset), "limit": limit, "offset": offset}


@router.post("/admin/reset/hard")
def reset_hard(session: AttendanceSession = Depends(get_attendance_session)):
    # 1) stop any scan so nothing writes against the cleared tables
    session.dispose()

    # 2) clear DB
    clear_all_tables()

    # 3) delete face images
    if FACES_DIR.exists():
        shutil.rmtree(FACES_DIR)
    FACES_DIR.mkdir(parents=True, exist_ok=True)

    # 4) reset training status
    reset_training_status()

    add_activity_log("System Reset", "Persons, schedules, attendance and faces cleared")
    return {"ok": True, "message": "Reset complete: persons + schedules + attendance + faces cleared"}
