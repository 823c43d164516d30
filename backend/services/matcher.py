from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np  # type: ignore

from backend.config import MATCH_THRESHOLD
from backend.face_model import BoundingBox, FaceDetection
from backend.services.gallery import LabeledDescriptor

UNKNOWN_LABEL = "unknown"


class Detector(Protocol):
    def detect(self, frame: Any) -> list[FaceDetection]: ...


@dataclass(frozen=True)
class FaceMatch:
    label: str
    distance: float

    @property
    def is_unknown(self) -> bool:
        return self.label == UNKNOWN_LABEL

    @property
    def confidence(self) -> float | None:
        if self.is_unknown:
            return None
        return 1.0 - self.distance


@dataclass(frozen=True)
class FrameMatch:
    match: FaceMatch
    box: BoundingBox | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "label": self.match.label,
            "distance": round(self.match.distance, 4),
            "confidence": None if self.match.confidence is None else round(self.match.confidence, 4),
            "box": self.box.as_dict() if self.box else None,
        }


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise ValueError(f"Descriptor size mismatch: {a.size} vs {b.size}")
    return float(np.linalg.norm(a - b))


class FaceMatcher:
    """Nearest-neighbour lookup of a descriptor against a labeled gallery."""

    def __init__(self, gallery: list[LabeledDescriptor], threshold: float = MATCH_THRESHOLD):
        self.gallery = [entry for entry in gallery if entry.descriptors]
        self.threshold = float(threshold)

    def __len__(self) -> int:
        return len(self.gallery)

    @property
    def is_empty(self) -> bool:
        return not self.gallery

    def classify(self, label: str, distance: float) -> FaceMatch:
        # a distance equal to the threshold still counts as a match
        if distance <= self.threshold:
            return FaceMatch(label=label, distance=distance)
        return FaceMatch(label=UNKNOWN_LABEL, distance=distance)

    def compute_mean_distance(self, embedding: np.ndarray, entry: LabeledDescriptor) -> float:
        distances = [euclidean_distance(embedding, ref) for ref in entry.descriptors]
        return sum(distances) / len(distances)

    def find_best_match(self, embedding: np.ndarray) -> FaceMatch:
        best_label = UNKNOWN_LABEL
        best_distance = float("inf")
        for entry in self.gallery:
            distance = self.compute_mean_distance(embedding, entry)
            if distance < best_distance:
                best_label, best_distance = entry.label, distance
        if best_label == UNKNOWN_LABEL:
            return FaceMatch(label=UNKNOWN_LABEL, distance=best_distance)
        return self.classify(best_label, best_distance)


def match_frame(frame: Any, detector: Detector, matcher: FaceMatcher) -> list[FrameMatch]:
    """
    Detect every face in ``frame`` and classify it against the gallery.

    An empty gallery short-circuits before the detector is called.
    Detector errors propagate; the caller decides whether to skip the frame.
    """
    if matcher.is_empty:
        return []
    return [
        FrameMatch(match=matcher.find_best_match(d.embedding), box=d.box)
        for d in detector.detect(frame)
    ]
