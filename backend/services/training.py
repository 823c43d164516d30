import logging
import shutil
import threading
from datetime import datetime

from fastapi import BackgroundTasks, UploadFile

from database.db import PersonKind, add_activity_log
from face_training.trainer import person_faces_dir, train_person

logger = logging.getLogger(__name__)

# -----------------------------
# Training Status (in-memory)
# -----------------------------
TRAINING_LOCK = threading.Lock()
STATUS_LOCK = threading.Lock()
QUEUE_LOCK = threading.Lock()
PENDING: list[tuple[PersonKind, int]] = []

TRAINING_STATUS = {
    "state": "idle",          # idle | running | success | failed
    "started_at": None,       # ISO string
    "finished_at": None,      # ISO string
    "message": "",
    "last_success": None,     # ISO string
    "current": None,          # "student:12" while running
    "queued": 0,              # persons waiting behind the current run
}


def _enqueue(kind: PersonKind, person_id: int) -> bool:
    with QUEUE_LOCK:
        if (kind, person_id) in PENDING:
            return False
        PENDING.append((kind, person_id))
        queued = len(PENDING)
    with STATUS_LOCK:
        TRAINING_STATUS["queued"] = queued
    return True


def _next_pending() -> tuple[PersonKind, int] | None:
    with QUEUE_LOCK:
        item = PENDING.pop(0) if PENDING else None
        queued = len(PENDING)
    with STATUS_LOCK:
        TRAINING_STATUS["queued"] = queued
    return item


def schedule_training(background_tasks: BackgroundTasks, kind: PersonKind, person_id: int) -> str:
    """
    Returns:
      - "started": training job scheduled now
      - "queued":  person added behind the current run
      - "already_queued": person is already waiting
    """
    if not _enqueue(kind, person_id):
        return "already_queued"
    if TRAINING_LOCK.locked():
        with STATUS_LOCK:
            TRAINING_STATUS["message"] = "Training in progress; next pass queued."
        return "queued"
    background_tasks.add_task(run_training_job)
    return "started"


def run_training_job() -> None:
    """Drains the pending queue, training one person at a time."""
    while True:
        if not TRAINING_LOCK.acquire(blocking=False):
            return
        try:
            _drain_queue()
        finally:
            TRAINING_LOCK.release()
        # a request may have queued itself between the last pop and the release
        with QUEUE_LOCK:
            if not PENDING:
                return


def _drain_queue() -> None:
    while True:
        item = _next_pending()
        if item is None:
            break
        kind, person_id = item
        with STATUS_LOCK:
            TRAINING_STATUS["state"] = "running"
            TRAINING_STATUS["started_at"] = datetime.now().isoformat(timespec="seconds")
            TRAINING_STATUS["finished_at"] = None
            TRAINING_STATUS["message"] = "Training started..."
            TRAINING_STATUS["current"] = f"{kind}:{person_id}"

        try:
            outcome = train_person(kind, person_id)
            ok, message = outcome.ok, outcome.message
        except Exception as e:
            logger.exception("Training %s %s failed", kind, person_id)
            ok, message = False, f"Training failed: {e}"

        finished_at = datetime.now().isoformat(timespec="seconds")
        with STATUS_LOCK:
            TRAINING_STATUS["state"] = "success" if ok else "failed"
            TRAINING_STATUS["finished_at"] = finished_at
            TRAINING_STATUS["message"] = message
            TRAINING_STATUS["current"] = None
            if ok:
                TRAINING_STATUS["last_success"] = finished_at
        if ok:
            add_activity_log("Face Training", f"{kind.title()} {person_id}: {message}")


def get_training_status() -> dict:
    with STATUS_LOCK:
        return dict(TRAINING_STATUS)


def reset_training_status(message: str = "System reset (persons + faces cleared).") -> None:
    with QUEUE_LOCK:
        PENDING.clear()
    with STATUS_LOCK:
        TRAINING_STATUS.update({
            "state": "idle",
            "started_at": None,
            "finished_at": None,
            "message": message,
            "last_success": None,
            "current": None,
            "queued": 0,
        })


def save_face_images(kind: PersonKind, person_id: int, files: list[UploadFile]) -> int:
    """
    Replace the stored training images of one person with the JPG/PNG
    uploads. Returns how many were saved.
    """
    save_dir = person_faces_dir(kind, person_id)
    valid_files = [f for f in files if f.content_type in ("image/jpeg", "image/png")]
    if not valid_files:
        return 0

    # retraining starts from the new images only
    if save_dir.exists():
        shutil.rmtree(save_dir)
    save_dir.mkdir(parents=True, exist_ok=True)

    saved = 0
    for idx, f in enumerate(valid_files, start=1):
        ext = ".jpg" if f.content_type == "image/jpeg" else ".png"
        out_path = save_dir / f"img_{idx}{ext}"
        with open(out_path, "wb") as out_file:
            shutil.copyfileobj(f.file, out_file)
        saved += 1
    return saved
