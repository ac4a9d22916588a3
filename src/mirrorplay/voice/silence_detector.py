"""
Silence detection for automatic submission.

The detector is fed one loudness sample per tick. It remembers when the last
above-floor sample arrived and requests a stop, exactly once, when the
speaker has been quiet for longer than the silence threshold. Floor and
threshold are fixed for the lifetime of a detector; there is no adaptive
noise-floor calibration.
"""

import logging

from mirrorplay.common.models import SilencePhase, StopReason

logger = logging.getLogger(__name__)

DEFAULT_SILENCE_THRESHOLD_MS = 4000
DEFAULT_LOUDNESS_FLOOR = 0.05

# Display phases as fractions of the silence threshold (3s/5s of a 6s window)
THINKING_FRACTION = 0.5
PREPARING_FRACTION = 5.0 / 6.0


class SilenceDetector:
    """
    Tracks time since the last audible sample and signals stop once.

    Args:
        silence_threshold_ms: Quiet duration that triggers a stop
        loudness_floor: Levels at or below this count as silence
        max_duration_ms: Also request a stop after this much recording time
            (0 disables)
        require_speech: Ignore silence until the first audible sample
    """

    def __init__(
        self,
        silence_threshold_ms: float = DEFAULT_SILENCE_THRESHOLD_MS,
        loudness_floor: float = DEFAULT_LOUDNESS_FLOOR,
        max_duration_ms: float = 0,
        require_speech: bool = False,
    ):
        if silence_threshold_ms <= 0:
            raise ValueError("silence_threshold_ms must be positive")
        if not 0.0 <= loudness_floor < 1.0:
            raise ValueError("loudness_floor must be in [0, 1)")

        self.silence_threshold_ms = silence_threshold_ms
        self.loudness_floor = loudness_floor
        self.max_duration_ms = max_duration_ms
        self.require_speech = require_speech

        self.last_sound_ms: float | None = None
        self._started_ms: float | None = None
        self._paused_ms: float | None = None
        self._has_spoken = False
        self._silence_ms = 0.0
        self._phase = SilencePhase.ACTIVE
        self._stop_reason: StopReason | None = None
        self._cancelled = False

    def reset(self, now_ms: float) -> None:
        """Arm the detector at the start of a recording."""
        self.last_sound_ms = now_ms
        self._started_ms = now_ms
        self._paused_ms = None
        self._has_spoken = False
        self._silence_ms = 0.0
        self._phase = SilencePhase.ACTIVE
        self._stop_reason = None
        self._cancelled = False

    def update(self, level: float, now_ms: float) -> bool:
        """
        Feed one loudness sample.

        Returns:
            True exactly once, on the sample that should stop the recording
        """
        if self._started_ms is None or self._stop_reason or self._cancelled:
            return False

        if level > self.loudness_floor:
            self.last_sound_ms = now_ms
            self._has_spoken = True
            self._silence_ms = 0.0
            self._phase = SilencePhase.ACTIVE
        elif self.require_speech and not self._has_spoken:
            self._silence_ms = 0.0
        else:
            self._silence_ms = now_ms - self.last_sound_ms
            self._phase = self._phase_for(self._silence_ms)
            if self._silence_ms > self.silence_threshold_ms:
                return self._fire(StopReason.SILENCE)

        if self.max_duration_ms and now_ms - self._started_ms >= self.max_duration_ms:
            return self._fire(StopReason.MAX_DURATION)

        return False

    def _phase_for(self, silence_ms: float) -> SilencePhase:
        if silence_ms >= self.silence_threshold_ms * PREPARING_FRACTION:
            return SilencePhase.PREPARING
        if silence_ms >= self.silence_threshold_ms * THINKING_FRACTION:
            return SilencePhase.THINKING
        return SilencePhase.ACTIVE

    def _fire(self, reason: StopReason) -> bool:
        self._stop_reason = reason
        self._phase = SilencePhase.SUBMITTING
        logger.debug(
            f"Stop requested ({reason.value}) after {self._silence_ms:.0f} ms of silence"
        )
        return True

    def pause(self, now_ms: float) -> None:
        """Mark the start of a pause; paused time is not counted as recording time."""
        if self._started_ms is None or self._paused_ms is not None:
            return
        self._paused_ms = now_ms

    def resume(self, now_ms: float) -> None:
        """Restart the silence window after a pause."""
        if self._started_ms is None:
            return
        if self._paused_ms is not None:
            self._started_ms += now_ms - self._paused_ms
            self._paused_ms = None
        self.last_sound_ms = now_ms
        self._silence_ms = 0.0
        self._phase = SilencePhase.ACTIVE

    def cancel(self) -> None:
        """Disarm after an explicit stop so no automatic stop can follow."""
        self._cancelled = True

    @property
    def fired(self) -> bool:
        return self._stop_reason is not None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def stop_reason(self) -> StopReason | None:
        return self._stop_reason

    @property
    def phase(self) -> SilencePhase:
        return self._phase

    @property
    def silence_ms(self) -> float:
        return self._silence_ms

    @property
    def has_spoken(self) -> bool:
        return self._has_spoken
