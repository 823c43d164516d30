import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RepeatingTask:
    """
    Calls ``callback`` every ``interval`` seconds on a daemon thread until
    cancelled. Ticks never overlap: the next one is scheduled from the start
    of the previous one, and a tick that overruns its slot simply delays the
    next start instead of queueing extra calls.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], object],
        *,
        initial_delay: float = 0.0,
        name: str = "repeating-task",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = float(interval)
        self.initial_delay = max(0.0, float(initial_delay))
        self.callback = callback
        self.name = name
        self.ticks = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                raise RuntimeError(f"{self.name} already started")
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()

    def _run(self) -> None:
        if self._stop.wait(self.initial_delay):
            return
        next_at = time.monotonic()
        while not self._stop.is_set():
            try:
                self.callback()
            except Exception:
                # the callback owns its error handling; never let the loop die
                logger.exception("%s tick failed", self.name)
            self.ticks += 1
            next_at += self.interval
            delay = next_at - time.monotonic()
            if delay < 0:
                next_at = time.monotonic()
                delay = 0.0
            if self._stop.wait(delay):
                break

    def cancel(self, timeout: float | None = 2.0) -> None:
        """Idempotent. Waits for an in-flight tick unless called from the tick itself."""
        self._stop.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("%s did not stop within %.1fs", self.name, timeout or 0)
