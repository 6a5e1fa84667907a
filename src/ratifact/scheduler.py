"""Fixed-interval background tasks."""

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Calls fn every interval seconds on a daemon thread until stopped."""

    def __init__(
        self,
        interval: float,
        fn: Callable[[], object],
        name: str = "periodic",
        run_immediately: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.fn = fn
        self.name = name
        self.run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"ratifact-{self.name}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the loop; a call already in progress is allowed to finish."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        if self.run_immediately:
            self._tick()
        while not self._stop.wait(self.interval):
            self._tick()

    def _tick(self) -> None:
        try:
            self.fn()
        except Exception:
            logger.exception("Periodic task %s failed", self.name)
