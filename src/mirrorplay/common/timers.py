"""
Repeating timers with mandatory cancellation.

An IntervalTimer runs its callback on a daemon thread every `interval`
seconds until cancel() is called. Once cancel() has returned, the callback
is guaranteed not to run again, including a tick that was already in
flight on the timer thread.
"""

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000.0


class IntervalTimer:
    """Repeating callback on a background thread."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        name: str = "interval-timer",
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self.callback = callback
        self.name = name

        # Re-entrant so the callback may cancel its own timer
        self._lock = threading.RLock()
        self._wakeup = threading.Event()
        self._cancelled = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                raise RuntimeError(f"{self.name} already started")
            if self._cancelled:
                raise RuntimeError(f"{self.name} was cancelled")
            self._thread = threading.Thread(target=self._run, name=self.name)
            self._thread.daemon = True
            self._thread.start()

    def _run(self) -> None:
        while not self._wakeup.wait(self.interval):
            with self._lock:
                if self._cancelled:
                    return
                try:
                    self.callback()
                except Exception:
                    logger.exception(f"{self.name} callback failed, stopping timer")
                    self._cancelled = True
                    return

    def cancel(self) -> None:
        """Stop the timer. Safe to call repeatedly and from the callback."""
        with self._lock:
            self._cancelled = True
            self._wakeup.set()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._cancelled
