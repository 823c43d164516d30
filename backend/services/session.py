import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable

from backend.camera import CameraManager
from backend.config import DETECTION_INTERVAL_MS, MATCH_THRESHOLD, SCAN_WARMUP_SECONDS
from backend.errors import CameraError, ModelNotReadyError, PreconditionError
from backend.face_model import FaceModel, get_face_model
from backend.services.gallery import ClassSchedule, Person, build_gallery, build_roster, label_index
from backend.services.matcher import FaceMatcher, FrameMatch, match_frame
from backend.services.reconciler import AttendanceStore, SaveResult, save_attendance
from backend.services.scheduler import RepeatingTask
from backend.services.tracker import AttendanceRecord, AttendanceStats, AttendanceStatus, AttendanceTracker

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"


@dataclass
class FrameResult:
    matches: list[FrameMatch] = field(default_factory=list)
    marked: list[AttendanceRecord] = field(default_factory=list)
    skipped: bool = False
    discarded: bool = False
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "faces": [m.as_dict() for m in self.matches],
            "marked": [r.as_dict() for r in self.marked],
            "skipped": self.skipped,
            "discarded": self.discarded,
            "error": self.error,
        }


class AttendanceSession:
    """
    One scanning run for one class schedule.

    Lifecycle: select_schedule() builds the gallery and resets every record
    to absent; start_scanning()/stop_scanning() own the camera and the
    detection task; save() hands the records to the reconciler; dispose()
    tears everything down.
    """

    def __init__(
        self,
        *,
        model_provider: Callable[[], FaceModel | None] = get_face_model,
        camera: CameraManager | None = None,
        threshold: float = MATCH_THRESHOLD,
        interval_seconds: float = DETECTION_INTERVAL_MS / 1000.0,
        warmup_seconds: float = SCAN_WARMUP_SECONDS,
    ):
        self.model_provider = model_provider
        self.camera = camera or CameraManager()
        self.threshold = threshold
        self.interval_seconds = interval_seconds
        self.warmup_seconds = warmup_seconds

        self.schedule: ClassSchedule | None = None
        self.attendance_id: Any = None
        self.roster: list[Person] = []
        self.matcher = FaceMatcher([], threshold)
        self.tracker = AttendanceTracker()
        self.labels: dict[str, list[Any]] = {}

        self.frames_processed = 0
        self.frames_skipped = 0
        self.last_error: str | None = None

        self._task: RepeatingTask | None = None
        self._scanning = False
        self._generation = 0
        self._lock = threading.Lock()
        self._detect_lock = threading.Lock()

    # -----------------------------
    # State
    # -----------------------------
    @property
    def is_scanning(self) -> bool:
        return self._scanning

    @property
    def state(self) -> ScanState:
        return ScanState.DETECTING if self._detect_lock.locked() else ScanState.IDLE

    def records(self) -> list[AttendanceRecord]:
        return self.tracker.records()

    def stats(self) -> AttendanceStats:
        return self.tracker.stats()

    def ambiguous_labels(self) -> dict[str, list[Any]]:
        return {name: ids for name, ids in self.labels.items() if len(ids) > 1}

    # -----------------------------
    # Gallery
    # -----------------------------
    def select_schedule(
        self,
        schedule: ClassSchedule,
        persons: Iterable[Person],
        *,
        attendance_id: Any = None,
        now: datetime | None = None,
    ) -> list[Person]:
        """Rebuild roster + gallery for ``schedule`` and reset all records to absent."""
        roster = build_roster(schedule, persons)
        matcher = FaceMatcher(build_gallery(roster), self.threshold)
        labels = label_index(roster)

        with self._lock:
            self.schedule = schedule
            self.attendance_id = attendance_id
            self.roster = roster
            self.matcher = matcher
            self.labels = labels
            self.tracker.reset(roster, now)
            # results of detections started against the old gallery are dropped
            self._generation += 1

        for name, ids in self.ambiguous_labels().items():
            logger.warning("Roster label %r is shared by persons %s; matches mark all of them", name, ids)
        logger.info(
            "Schedule %s selected: %s trained students (%s in gallery)",
            schedule.subject_name,
            len(roster),
            len(matcher),
        )
        return roster

    def resume(self, document: dict[str, Any], persons: Iterable[Person], now: datetime | None = None) -> list[Person]:
        """Reopen an existing attendance document; the next save updates it in place."""
        snapshot = document.get("class_schedule") or {}
        schedule = ClassSchedule.from_row(snapshot, schedule_id=snapshot.get("subject_id") or document.get("id"))
        return self.select_schedule(schedule, persons, attendance_id=document.get("id"), now=now)

    # -----------------------------
    # Scanning
    # -----------------------------
    def _require_model(self) -> FaceModel:
        model = self.model_provider()
        if model is None or not model.is_ready:
            raise ModelNotReadyError("Face recognition models are still loading. Please wait...")
        return model

    def start_scanning(self) -> bool:
        """
        Returns False when already scanning. Preconditions are checked before
        the camera is touched; a camera failure leaves no task behind.
        """
        with self._lock:
            if self._scanning:
                return False
            if self.schedule is None:
                raise PreconditionError("Please select a class schedule first.")
            self._require_model()
            if self.matcher.is_empty:
                raise PreconditionError("No trained students found for this class. Please train students first.")

            self.camera.acquire()
            task = RepeatingTask(
                self.interval_seconds,
                self._tick,
                initial_delay=self.warmup_seconds,
                name="attendance-scan",
            )
            self._generation += 1
            self._scanning = True
            try:
                task.start()
            except Exception:
                self._scanning = False
                self.camera.release()
                raise
            self._task = task

        logger.info("Scanning started for %s on camera %s", self.schedule.subject_name, self.camera.index)
        return True

    def stop_scanning(self) -> bool:
        """Idempotent; always clears the task and releases the camera."""
        with self._lock:
            was_scanning = self._scanning
            self._scanning = False
            self._generation += 1
            task = self._task
            self._task = None

        if task is not None:
            task.cancel()
        self.camera.release()
        if was_scanning:
            logger.info("Scanning stopped")
        return was_scanning

    def switch_camera(self) -> int:
        """Move to the next camera device, restarting the scan if one was running."""
        was_scanning = self.stop_scanning()
        self.camera.select(self.camera.next_device_index())
        if was_scanning:
            self.start_scanning()
        logger.info("Switched to camera %s", self.camera.index)
        return self.camera.index

    def _tick(self) -> None:
        with self._lock:
            if not self._scanning:
                return
            generation = self._generation
        try:
            frame = self.camera.read()
        except CameraError as exc:
            self.last_error = str(exc)
            logger.warning("Skipping tick: %s", exc)
            return
        try:
            self.process_frame(frame, generation=generation)
        except Exception as exc:
            self.last_error = str(exc)
            logger.warning("Detection failed, skipping frame: %s", exc)

    def process_frame(self, frame: Any, *, generation: int | None = None) -> FrameResult:
        """
        Match one frame and apply the matches to the tracker.

        Only one detection runs at a time; a frame arriving while another is
        being processed is skipped. When ``generation`` is given (scan loop),
        results are discarded if scanning stopped or the schedule changed
        while the detector was running.
        """
        if not self._detect_lock.acquire(blocking=False):
            self.frames_skipped += 1
            return FrameResult(skipped=True)
        try:
            with self._lock:
                matcher = self.matcher
                tracker = self.tracker
                started_generation = self._generation

            if matcher.is_empty:
                return FrameResult()

            model = self._require_model()
            matches = match_frame(frame, model, matcher)
            self.frames_processed += 1

            marked: list[AttendanceRecord] = []
            with self._lock:
                stale = self._generation != started_generation
                if generation is not None:
                    stale = stale or not self._scanning or generation != self._generation
                if stale:
                    return FrameResult(matches=matches, discarded=True)
                for m in matches:
                    if m.match.is_unknown:
                        continue
                    marked.extend(tracker.mark(m.match.label, m.match.confidence))
            return FrameResult(matches=matches, marked=marked)
        finally:
            self._detect_lock.release()

    def submit_frame(self, frame: Any) -> FrameResult:
        """Frame pushed by a remote capture client instead of the local camera."""
        if self.schedule is None:
            raise PreconditionError("Please select a class schedule first.")
        self._require_model()
        try:
            return self.process_frame(frame)
        except ModelNotReadyError:
            raise
        except Exception as exc:
            self.last_error = str(exc)
            logger.warning("Detection failed for submitted frame: %s", exc)
            return FrameResult(skipped=True, error=str(exc))

    # -----------------------------
    # Records
    # -----------------------------
    def set_status(self, student_id: Any, status: AttendanceStatus) -> AttendanceRecord:
        if self.schedule is None:
            raise PreconditionError("Please select a class schedule first.")
        return self.tracker.set_status(student_id, status)

    def save(self, store: AttendanceStore, today: date | None = None) -> SaveResult:
        with self._lock:
            schedule = self.schedule
            attendance_id = self.attendance_id
        result = save_attendance(
            schedule,
            self.tracker.records(),
            store,
            attendance_id=attendance_id,
            today=today,
        )
        if result.created:
            with self._lock:
                # later saves in this session update the document just created
                if self.schedule is schedule:
                    self.attendance_id = result.attendance_id
        return result

    def forget_document(self, attendance_id: Any) -> bool:
        """Drop the link to a deleted document so the next save creates a new one."""
        with self._lock:
            if self.attendance_id != attendance_id:
                return False
            self.attendance_id = None
            return True

    def dispose(self) -> None:
        self.stop_scanning()
        with self._lock:
            self.schedule = None
            self.attendance_id = None
            self.roster = []
            self.labels = {}
            self.matcher = FaceMatcher([], self.threshold)
            self.tracker.reset([])
            self._generation += 1

    def snapshot(self) -> dict[str, Any]:
        schedule = self.schedule
        return {
            "schedule": None if schedule is None else {"id": schedule.id, **schedule.snapshot()},
            "attendance_id": self.attendance_id,
            "scanning": self._scanning,
            "state": self.state.value,
            "camera_index": self.camera.index,
            "gallery_size": len(self.matcher),
            "ambiguous_labels": self.ambiguous_labels(),
            "frames_processed": self.frames_processed,
            "frames_skipped": self.frames_skipped,
            "last_error": self.last_error,
            "stats": self.stats().as_dict(),
            "records": [r.as_dict() for r in self.records()],
        }


_SESSION: AttendanceSession | None = None
_SESSION_LOCK = threading.Lock()


def get_attendance_session() -> AttendanceSession:
    global _SESSION
    with _SESSION_LOCK:
        if _SESSION is None:
            _SESSION = AttendanceSession()
        return _SESSION


def shutdown_attendance_session() -> None:
    global _SESSION
    with _SESSION_LOCK:
        session = _SESSION
        _SESSION = None
    if session is not None:
        session.dispose()
