import logging
import threading
from dataclasses import dataclass
from pathlib import Path

import cv2  # type: ignore
import numpy as np  # type: ignore

from backend.config import (
    DETECTOR_MODEL_PATH,
    DETECTOR_NMS_THRESHOLD,
    DETECTOR_SCORE_THRESHOLD,
    DESCRIPTOR_SCALE,
    DETECTOR_TOP_K,
    RECOGNIZER_MODEL_PATH,
)
from backend.errors import ModelNotReadyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    def as_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class FaceDetection:
    box: BoundingBox
    embedding: np.ndarray
    score: float = 1.0


def scale_feature(feature, scale: float = DESCRIPTOR_SCALE) -> np.ndarray:
    """
    Raw SFace output has an arbitrary norm; only its direction identifies a
    face. Returns the unit vector times ``scale``.
    """
    vector = np.asarray(feature, dtype=np.float64).reshape(-1)
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector * (scale / norm)


class FaceModel:
    """
    YuNet face detector + SFace recognizer (128-d descriptors).

    The OpenCV handles are not safe to share between threads, so every call
    into them is serialized on one lock.
    """

    def __init__(self, detector, recognizer, scale: float = DESCRIPTOR_SCALE):
        self._detector = detector
        self._recognizer = recognizer
        self.scale = scale
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._detector is not None and self._recognizer is not None

    def _detect_raw(self, frame_bgr) -> np.ndarray:
        h, w = frame_bgr.shape[:2]
        self._detector.setInputSize((w, h))
        _, faces = self._detector.detect(frame_bgr)
        if faces is None:
            return np.empty((0, 15), dtype=np.float32)
        return faces

    def _embedding_for(self, frame_bgr, face_row) -> np.ndarray:
        aligned = self._recognizer.alignCrop(frame_bgr, face_row)
        return scale_feature(self._recognizer.feature(aligned), self.scale)

    def detect(self, frame_bgr) -> list[FaceDetection]:
        """All faces in the frame, each with its descriptor."""
        if not self.is_ready:
            raise ModelNotReadyError("Face recognition models are not loaded.")
        if frame_bgr is None or getattr(frame_bgr, "size", 0) == 0:
            return []

        out: list[FaceDetection] = []
        with self._lock:
            for face_row in self._detect_raw(frame_bgr):
                x, y, w, h = (int(v) for v in face_row[:4])
                out.append(
                    FaceDetection(
                        box=BoundingBox(x=x, y=y, width=w, height=h),
                        embedding=self._embedding_for(frame_bgr, face_row),
                        score=float(face_row[-1]),
                    )
                )
        return out

    def embed(self, image_bgr) -> np.ndarray | None:
        """Descriptor of the largest face in the image, or None if no face."""
        detections = self.detect(image_bgr)
        if not detections:
            return None
        # take largest face
        best = sorted(detections, key=lambda d: d.box.area, reverse=True)[0]
        return best.embedding


def load_face_model(
    detector_path: Path = DETECTOR_MODEL_PATH,
    recognizer_path: Path = RECOGNIZER_MODEL_PATH,
) -> FaceModel | None:
    if not detector_path.exists() or not recognizer_path.exists():
        logger.warning(
            "Face model files missing (detector=%s, recognizer=%s)",
            detector_path,
            recognizer_path,
        )
        return None
    detector = cv2.FaceDetectorYN.create(
        str(detector_path),
        "",
        (320, 320),
        DETECTOR_SCORE_THRESHOLD,
        DETECTOR_NMS_THRESHOLD,
        DETECTOR_TOP_K,
    )
    recognizer = cv2.FaceRecognizerSF.create(str(recognizer_path), "")
    logger.info("Face models loaded from %s", detector_path.parent)
    return FaceModel(detector, recognizer)


MODEL: FaceModel | None = None


def get_face_model() -> FaceModel | None:
    global MODEL
    if MODEL is None:
        try:
            MODEL = load_face_model()
        except cv2.error as exc:
            logger.error("Unable to load face models: %s", exc)
            MODEL = None
    return MODEL


def require_face_model() -> FaceModel:
    model = get_face_model()
    if model is None or not model.is_ready:
        raise ModelNotReadyError("Face recognition models are still loading or missing.")
    return model


def reload_model() -> bool:
    global MODEL
    MODEL = None
    return get_face_model() is not None


def set_face_model(model: FaceModel | None) -> None:
    """Install an already-built model (used by tests and embedding hosts)."""
    global MODEL
    MODEL = model
