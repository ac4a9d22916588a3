"""
Capture session: one microphone-open to microphone-closed lifecycle.

Wires the recorder, level sampler, silence detector and submit pipeline
together and owns the sampling timer. The stop sequence is always: cancel
the detector and timer, finalize the recorder, then schedule the submission.
"""

import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any

from mirrorplay.common.context import AppContext
from mirrorplay.common.models import (
    CaptureState,
    RecordedAudio,
    SilencePhase,
    StateCallback,
    StopReason,
)
from mirrorplay.common.notifier_base import format_user_error
from mirrorplay.common.timers import IntervalTimer, monotonic_ms
from mirrorplay.voice.audio_recorder import (
    AudioRecorder,
    MicrophonePermissionError,
    RecorderError,
)
from mirrorplay.voice.level_sampler import AudioLevelSampler
from mirrorplay.voice.silence_detector import SilenceDetector
from mirrorplay.voice.transcription import SubmissionInProgressError

logger = logging.getLogger(__name__)

SubmitCallback = Callable[[RecordedAudio], Awaitable[Any]]


class CaptureSession:
    """
    Records one answer at a time and submits it when the speaker stops.

    Args:
        context: Shared services (config, notifier, device lock, event loop)
        submit: Coroutine function that receives the finalized recording
        auto_stop: Stop automatically after the silence threshold
        recorder_factory: Builds the AudioRecorder (tests pass a fake)
        timer_factory: Builds the sampling timer
        clock: Millisecond clock used by the silence detector
    """

    def __init__(
        self,
        context: AppContext,
        submit: SubmitCallback,
        auto_stop: bool = True,
        recorder_factory: Callable[..., AudioRecorder] = AudioRecorder,
        timer_factory: Callable[..., IntervalTimer] = IntervalTimer,
        clock: Callable[[], float] = monotonic_ms,
    ):
        self.context = context
        self.submit = submit
        self.auto_stop = auto_stop
        self.recorder_factory = recorder_factory
        self.timer_factory = timer_factory
        self.clock = clock

        self.sampler = AudioLevelSampler()
        self.detector: SilenceDetector | None = None
        self.recorder: AudioRecorder | None = None
        self.last_recording: RecordedAudio | None = None
        self.stop_reason: StopReason | None = None
        self.on_state: StateCallback | None = None

        self._timer: IntervalTimer | None = None
        self._state = CaptureState.IDLE
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _set_state(self, state: CaptureState) -> None:
        self._state = state
        logger.debug(f"Capture state: {state.value}")
        self.context.notifier.set_state(state)
        if self.on_state:
            self.on_state(state)

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def level(self) -> float:
        return self.sampler.level

    @property
    def silence_phase(self) -> SilencePhase:
        if self.detector is None:
            return SilencePhase.ACTIVE
        return self.detector.phase

    @property
    def elapsed_seconds(self) -> float:
        recorder = self.recorder
        if recorder is None:
            return 0.0
        return recorder.elapsed_seconds

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Open the microphone and begin sampling.

        Returns:
            True if recording started
        """
        with self._lock:
            if self._state is CaptureState.TRANSCRIBING:
                self.context.notifier.show_notification(
                    "Please wait", "Your last answer is still being processed."
                )
                return False
            if self._state is not CaptureState.IDLE:
                logger.warning(f"Cannot start recording while {self._state.value}")
                return False

            config = self.context.config
            self._set_state(CaptureState.REQUESTING_PERMISSION)
            self.last_recording = None
            self.stop_reason = None
            self.sampler.reset()

            recorder = self.recorder_factory(
                sample_rate=config.get("recording", "sample_rate", default=16000),
                channels=config.get("recording", "channels", default=1),
                chunk_size=config.get("recording", "chunk_size", default=1024),
                device_index=config.get("recording", "device_index"),
                device_lock=self.context.device_lock,
                on_audio_chunk=self._on_audio_chunk,
                on_error=self._on_recorder_error,
                on_release=self._on_device_taken,
            )
            try:
                recorder.start()
            except MicrophonePermissionError as e:
                logger.warning(f"Microphone permission denied: {e}")
                self._set_state(CaptureState.IDLE)
                self.context.notifier.show_notification(
                    "Microphone access required",
                    "Allow microphone access and try again.",
                    variant="destructive",
                )
                return False
            except RecorderError as e:
                logger.error(f"Failed to start recording: {e}")
                self._set_state(CaptureState.IDLE)
                self.context.notifier.show_notification(
                    "Recording unavailable",
                    format_user_error(str(e)),
                    variant="destructive",
                )
                return False

            self.recorder = recorder
            self.detector = SilenceDetector(
                silence_threshold_ms=config.silence_threshold_ms,
                loudness_floor=config.loudness_floor,
                max_duration_ms=config.max_duration_ms,
                require_speech=config.require_speech,
            )
            self.detector.reset(self.clock())

            self._timer = self.timer_factory(
                config.sample_interval_ms / 1000.0,
                self._on_tick,
                name="level-sampler",
            )
            self._set_state(CaptureState.RECORDING)
            self._timer.start()
            return True

    def _on_audio_chunk(self, chunk: bytes) -> None:
        recorder = self.recorder
        channels = recorder.actual_channels if recorder is not None else 1
        self.sampler.feed(chunk, channels)

    def _on_tick(self) -> None:
        """Sample the level and let the detector decide whether to stop."""
        with self._lock:
            if self._state is not CaptureState.RECORDING or self.detector is None:
                return
            level = self.sampler.sample()
            should_stop = self.detector.update(level, self.clock())
            self.context.notifier.show_level(level, self.detector.phase)
            if should_stop and self.auto_stop:
                self._finish(self.detector.stop_reason or StopReason.SILENCE)

    def pause(self) -> bool:
        with self._lock:
            if self._state is not CaptureState.RECORDING or self.recorder is None:
                return False
            if not self.recorder.pause():
                return False
            if self.detector is not None:
                self.detector.pause(self.clock())
            self._set_state(CaptureState.PAUSED)
            return True

    def resume(self) -> bool:
        with self._lock:
            if self._state is not CaptureState.PAUSED or self.recorder is None:
                return False
            if not self.recorder.resume():
                return False
            if self.detector is not None:
                self.detector.resume(self.clock())
            self._set_state(CaptureState.RECORDING)
            return True

    def stop(self) -> RecordedAudio | None:
        """
        Stop recording on user request and submit the result.

        Returns:
            The finalized recording, or None if nothing was recording
        """
        # The timer lock is taken before the session lock on every path
        self._cancel_timer()
        with self._lock:
            return self._finish(StopReason.USER)

    def _finish(self, reason: StopReason) -> RecordedAudio | None:
        if self._state not in (CaptureState.RECORDING, CaptureState.PAUSED):
            return None
        recorder = self.recorder
        if recorder is None:
            return None

        if self.detector is not None:
            self.detector.cancel()
        self._cancel_timer()
        audio = recorder.stop()
        self.recorder = None
        self.stop_reason = reason
        logger.info(f"Recording stopped ({reason.value}), {audio.duration:.1f}s captured")

        if audio.is_empty:
            self._set_state(CaptureState.IDLE)
            self.context.notifier.show_notification(
                "Nothing recorded", "No audio was captured. Please try again."
            )
            return audio

        self.last_recording = audio
        self._set_state(CaptureState.TRANSCRIBING)
        try:
            self.context.schedule(self._submit(audio))
        except RuntimeError as e:
            logger.error(f"Could not schedule submission: {e}")
            self.last_recording = None
            self._set_state(CaptureState.IDLE)
        return audio

    async def _submit(self, audio: RecordedAudio) -> Any:
        try:
            return await self.submit(audio)
        except SubmissionInProgressError as e:
            logger.warning(str(e))
            self.context.notifier.show_notification("Please wait", str(e))
            return None
        finally:
            with self._lock:
                # Failed or not, the payload is not kept for a retry
                self.last_recording = None
                if self._state is CaptureState.TRANSCRIBING:
                    self._set_state(CaptureState.IDLE)

    def _on_recorder_error(self, error: Exception) -> None:
        """Capture failed mid-session on the reader thread."""
        self._cancel_timer()
        with self._lock:
            recorder = self.recorder
            if recorder is None:
                return
            self.recorder = None
            if self.detector is not None:
                self.detector.cancel()
            recorder.cancel()
            self._set_state(CaptureState.ERROR)
            self.context.notifier.show_notification(
                "Recording stopped",
                format_user_error(str(error)),
                variant="destructive",
            )
            self._set_state(CaptureState.IDLE)

    def _on_device_taken(self) -> None:
        """Another capture took the microphone: drop this one without submitting."""
        self._cancel_timer()
        with self._lock:
            recorder = self.recorder
            if recorder is None:
                return
            self.recorder = None
            if self.detector is not None:
                self.detector.cancel()
            recorder.cancel()
            self.sampler.reset()
            self.last_recording = None
            logger.info("Microphone taken by another capture, recording discarded")
            self._set_state(CaptureState.IDLE)
            self.context.notifier.show_notification(
                "Recording stopped", "The microphone is being used by another recording."
            )

    def discard(self) -> None:
        """Cancel timers and the recording, releasing the device."""
        self._cancel_timer()
        with self._lock:
            if self.detector is not None:
                self.detector.cancel()
            recorder = self.recorder
            self.recorder = None
            if recorder is not None:
                recorder.cancel()
            self.last_recording = None
            if self._state in (
                CaptureState.REQUESTING_PERMISSION,
                CaptureState.RECORDING,
                CaptureState.PAUSED,
            ):
                self._set_state(CaptureState.IDLE)

    def close(self) -> None:
        self.discard()

    def _cancel_timer(self) -> None:
        timer = self._timer
        if timer is not None:
            timer.cancel()

    def __enter__(self) -> "CaptureSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
