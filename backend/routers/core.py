from fastapi import APIRouter, HTTPException

from backend.config import (
    CAMERA_HEIGHT,
    CAMERA_INDEX,
    CAMERA_WIDTH,
    DB_PATH,
    DESCRIPTOR_LENGTH,
    DETECTION_INTERVAL_MS,
    DETECTOR_SCORE_THRESHOLD,
    ENABLE_DEBUG_ENDPOINTS,
    MATCH_THRESHOLD,
    MIN_TRAINING_IMAGES,
    SCAN_WARMUP_SECONDS,
)
from backend.face_model import get_face_model

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath():
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/recognition")
def recognition_config():
    model = get_face_model()
    return {
        "models_loaded": bool(model is not None and model.is_ready),
        "match_threshold": MATCH_THRESHOLD,
        "descriptor_length": DESCRIPTOR_LENGTH,
        "detector_score_threshold": DETECTOR_SCORE_THRESHOLD,
        "detection_interval_ms": DETECTION_INTERVAL_MS,
        "scan_warmup_seconds": SCAN_WARMUP_SECONDS,
        "camera_index": CAMERA_INDEX,
        "camera_width": CAMERA_WIDTH,
        "camera_height": CAMERA_HEIGHT,
        "min_training_images": MIN_TRAINING_IMAGES,
    }
