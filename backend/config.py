import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

ASSETS_DIR = Path(os.getenv("ROLLCALL_ASSETS_DIR", BASE_DIR / "assets"))
FACES_DIR = Path(os.getenv("ROLLCALL_FACES_DIR", ASSETS_DIR / "faces"))
MODELS_DIR = Path(os.getenv("ROLLCALL_MODELS_DIR", BASE_DIR / "models"))
DETECTOR_MODEL_PATH = Path(
    os.getenv("ROLLCALL_DETECTOR_MODEL_PATH", MODELS_DIR / "face_detection_yunet_2023mar.onnx")
)
RECOGNIZER_MODEL_PATH = Path(
    os.getenv("ROLLCALL_RECOGNIZER_MODEL_PATH", MODELS_DIR / "face_recognition_sface_2021dec.onnx")
)
DB_PATH = Path(os.getenv("ROLLCALL_DB_PATH", BASE_DIR / "database" / "rollcall.db"))


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_optional_path(value: str | None) -> Path | None:
    if not value or not value.strip():
        return None
    return Path(value.strip())


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_ORIGINS"),
    ["http://localhost:3000", "http://127.0.0.1:3000"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_HEADERS"),
    ["Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("ROLLCALL_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("ROLLCALL_ENABLE_DEBUG_ENDPOINTS"), False)

LOG_LEVEL = os.getenv("ROLLCALL_LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_DIR = _parse_optional_path(os.getenv("ROLLCALL_LOG_DIR"))

# Matching (Euclidean distance, lower = better)
MATCH_THRESHOLD = float(os.getenv("ROLLCALL_MATCH_THRESHOLD", "0.6"))
DESCRIPTOR_LENGTH = int(os.getenv("ROLLCALL_DESCRIPTOR_LENGTH", "128"))
DETECTOR_SCORE_THRESHOLD = float(os.getenv("ROLLCALL_DETECTOR_SCORE_THRESHOLD", "0.8"))
DETECTOR_NMS_THRESHOLD = float(os.getenv("ROLLCALL_DETECTOR_NMS_THRESHOLD", "0.3"))
DETECTOR_TOP_K = int(os.getenv("ROLLCALL_DETECTOR_TOP_K", "5000"))

# SFace features are L2-normalized, then scaled so OpenCV's documented
# same-person bound (NORM_L2 <= 1.128 on unit features, cosine >= 0.363)
# lands on a distance of 0.6, the scale MATCH_THRESHOLD is expressed in.
SFACE_MATCH_L2 = 1.128
DESCRIPTOR_SCALE = float(os.getenv("ROLLCALL_DESCRIPTOR_SCALE", str(0.6 / SFACE_MATCH_L2)))

# Scanning loop
DETECTION_INTERVAL_MS = max(10, int(os.getenv("ROLLCALL_DETECTION_INTERVAL_MS", "100")))
SCAN_WARMUP_SECONDS = max(0.0, float(os.getenv("ROLLCALL_SCAN_WARMUP_SECONDS", "1.0")))

# Camera
CAMERA_INDEX = int(os.getenv("ROLLCALL_CAMERA_INDEX", "0"))
CAMERA_WIDTH = int(os.getenv("ROLLCALL_CAMERA_WIDTH", "1280"))
CAMERA_HEIGHT = int(os.getenv("ROLLCALL_CAMERA_HEIGHT", "720"))
CAMERA_SCAN_LIMIT = max(1, int(os.getenv("ROLLCALL_CAMERA_SCAN_LIMIT", "4")))

# Face enrollment
MIN_TRAINING_IMAGES = max(1, int(os.getenv("ROLLCALL_MIN_TRAINING_IMAGES", "5")))
