"""
Terminal implementation of the notification surface.

Messages go to stdout, destructive ones to stderr. While recording, the
input level is redrawn in place as a single meter line.
"""

import sys
import threading
from typing import TextIO

from mirrorplay.common.models import CaptureState, SilencePhase
from mirrorplay.common.notifier_base import AbstractNotifier

METER_WIDTH = 30

STATE_LABELS = {
    CaptureState.IDLE: "Ready",
    CaptureState.REQUESTING_PERMISSION: "Opening microphone...",
    CaptureState.RECORDING: "Recording (stops after a pause in speech)",
    CaptureState.PAUSED: "Paused",
    CaptureState.TRANSCRIBING: "Transcribing...",
    CaptureState.ERROR: "Error",
}

PHASE_LABELS = {
    SilencePhase.ACTIVE: "listening",
    SilencePhase.THINKING: "thinking...",
    SilencePhase.PREPARING: "preparing to submit...",
    SilencePhase.SUBMITTING: "submitting",
}


class ConsoleNotifier(AbstractNotifier):
    """Notifier that writes to the terminal."""

    def __init__(
        self,
        app_name: str = "Mirror Play",
        out: TextIO | None = None,
        err: TextIO | None = None,
        show_meter: bool = True,
    ):
        super().__init__(app_name)
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.show_meter = show_meter
        self._lock = threading.Lock()
        self._meter_visible = False

    def _clear_meter(self) -> None:
        if self._meter_visible:
            self.out.write("\r" + " " * (METER_WIDTH + 40) + "\r")
            self._meter_visible = False

    def set_state(self, state: CaptureState) -> None:
        with self._lock:
            if state is self.state:
                return
            self.state = state
            self._clear_meter()
            self.out.write(f"[{STATE_LABELS.get(state, state.value)}]\n")
            self.out.flush()

    def show_notification(self, title: str, message: str, variant: str = "default") -> None:
        stream = self.err if variant == "destructive" else self.out
        with self._lock:
            self._clear_meter()
            stream.write(f"{title}: {message}\n" if message else f"{title}\n")
            stream.flush()

    def show_level(self, level: float, phase: SilencePhase) -> None:
        if not self.show_meter:
            return
        filled = int(round(max(0.0, min(level, 1.0)) * METER_WIDTH))
        bar = "#" * filled + "-" * (METER_WIDTH - filled)
        with self._lock:
            self.out.write(f"\r[{bar}] {PHASE_LABELS[phase]:<24}")
            self.out.flush()
            self._meter_visible = True
