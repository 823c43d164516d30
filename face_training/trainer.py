import logging
from dataclasses import dataclass
from pathlib import Path

import cv2  # type: ignore
import numpy as np  # type: ignore

from backend.config import DESCRIPTOR_LENGTH, FACES_DIR, MIN_TRAINING_IMAGES
from backend.face_model import require_face_model, scale_feature
from database.db import PersonKind, get_person, set_face_descriptors

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png"}


@dataclass
class TrainingOutcome:
    ok: bool
    message: str
    images: int = 0
    faces: int = 0


def person_faces_dir(kind: PersonKind, person_id: int) -> Path:
    return FACES_DIR / kind / str(person_id)


def average_descriptors(descriptors: list[np.ndarray]) -> np.ndarray:
    """Component-wise mean of several descriptors of the same face."""
    if not descriptors:
        raise ValueError("No descriptors to average.")
    stacked = np.vstack([np.asarray(d, dtype=np.float64).reshape(-1) for d in descriptors])
    if stacked.shape[1] != DESCRIPTOR_LENGTH:
        raise ValueError(f"Expected {DESCRIPTOR_LENGTH}-d descriptors, got {stacked.shape[1]}")
    return stacked.mean(axis=0)


def _image_paths(folder: Path) -> list[Path]:
    if not folder.exists():
        return []
    return sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)


def train_person(kind: PersonKind, person_id: int, model=None) -> TrainingOutcome:
    """
    Embed every stored image of one person, average the descriptors and
    store the result as the person's trained face.
    """
    if get_person(kind, person_id) is None:
        return TrainingOutcome(ok=False, message=f"{kind.title()} {person_id} not found.")

    paths = _image_paths(person_faces_dir(kind, person_id))
    if len(paths) < MIN_TRAINING_IMAGES:
        return TrainingOutcome(
            ok=False,
            message=f"Need at least {MIN_TRAINING_IMAGES} images, found {len(paths)}.",
            images=len(paths),
        )

    face_model = model or require_face_model()
    descriptors: list[np.ndarray] = []
    for img_path in paths:
        img = cv2.imread(str(img_path), cv2.IMREAD_COLOR)
        if img is None:
            logger.warning("[train] Unreadable image %s", img_path)
            continue
        descriptor = face_model.embed(img)
        if descriptor is None:
            continue
        descriptors.append(descriptor)

    if not descriptors:
        logger.warning("[train] No valid faces for %s %s. Training aborted.", kind, person_id)
        return TrainingOutcome(
            ok=False,
            message="Failed to extract face descriptors. Please try again with clearer images.",
            images=len(paths),
        )

    # the mean of unit directions falls inside the sphere; put it back on it
    averaged = scale_feature(average_descriptors(descriptors))
    set_face_descriptors(kind, person_id, averaged.tolist(), images_count=len(paths))
    logger.info("[train] %s %s trained from %s/%s images", kind, person_id, len(descriptors), len(paths))
    return TrainingOutcome(
        ok=True,
        message="Face training completed.",
        images=len(paths),
        faces=len(descriptors),
    )
