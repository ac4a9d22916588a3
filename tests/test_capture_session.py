"""Tests for the capture session: auto-stop, manual stop and submission."""

from __future__ import annotations

import asyncio

import pytest

from mirrorplay.common.api_client import APIError
from mirrorplay.common.models import CaptureState, RecordedAudio, StopReason
from mirrorplay.voice.audio_recorder import (
    DeviceLock,
    DeviceUnavailableError,
    MicrophonePermissionError,
)
from mirrorplay.voice.capture_session import CaptureSession
from mirrorplay.voice.transcription import TranscriptionPipeline

TICK_MS = 50


class _FakeContext:
    def __init__(self, config, notifier) -> None:
        self.config = config
        self.notifier = notifier
        self.device_lock = DeviceLock()
        self.scheduled: list = []

    def schedule(self, coro):
        self.scheduled.append(coro)
        return None


class _FakeRecorder:
    start_error: Exception | None = None
    duration = 2.5

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.started = False
        self.stop_calls = 0
        self.cancelled = False
        self.paused = False
        self.actual_channels = 1
        self.elapsed_seconds = 0.0

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.kwargs["device_lock"].acquire(self, self.kwargs.get("on_release") or self.cancel)
        self.started = True

    def stop(self) -> RecordedAudio:
        self.stop_calls += 1
        self.kwargs["device_lock"].release(self)
        return RecordedAudio(data=b"RIFF-audio", duration=self.duration)

    def pause(self) -> bool:
        self.paused = True
        return True

    def resume(self) -> bool:
        self.paused = False
        return True

    def cancel(self) -> None:
        self.cancelled = True
        self.kwargs["device_lock"].release(self)


class _FakeTimer:
    def __init__(self, interval: float, callback, name: str = "") -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def tick(self) -> None:
        if self.started and not self.cancelled:
            self.callback()


class _Harness:
    """Capture session wired to fakes with a manual clock and level."""

    def __init__(self, config, notifier, submit=None, context=None) -> None:
        self.context = context or _FakeContext(config, notifier)
        self.now = 0.0
        self.level = 0.0
        self.recorders: list[_FakeRecorder] = []
        self.timers: list[_FakeTimer] = []
        self.submitted: list[RecordedAudio] = []

        async def default_submit(audio: RecordedAudio) -> str:
            self.submitted.append(audio)
            return "ok"

        def make_recorder(**kwargs) -> _FakeRecorder:
            recorder = _FakeRecorder(**kwargs)
            self.recorders.append(recorder)
            return recorder

        def make_timer(*args, **kwargs) -> _FakeTimer:
            timer = _FakeTimer(*args, **kwargs)
            self.timers.append(timer)
            return timer

        self.session = CaptureSession(
            self.context,
            submit or default_submit,
            recorder_factory=make_recorder,
            timer_factory=make_timer,
            clock=lambda: self.now,
        )
        self.session.sampler.sample = lambda: self.level

    def advance_to(self, end_ms: float) -> None:
        while self.now + TICK_MS <= end_ms:
            self.now += TICK_MS
            self.timers[-1].tick()

    def run_scheduled(self) -> None:
        for coro in self.context.scheduled:
            asyncio.run(coro)
        self.context.scheduled.clear()

    def close_scheduled(self) -> None:
        for coro in self.context.scheduled:
            coro.close()


@pytest.fixture(autouse=True)
def _reset_fake_recorder(monkeypatch):
    monkeypatch.setattr(_FakeRecorder, "start_error", None)
    monkeypatch.setattr(_FakeRecorder, "duration", 2.5)


def test_start_configures_recorder_and_timer(config, notifier) -> None:
    h = _Harness(config, notifier)

    assert h.session.start() is True

    recorder = h.recorders[0]
    assert recorder.started
    assert recorder.kwargs["sample_rate"] == 16000
    assert recorder.kwargs["device_lock"] is h.context.device_lock
    assert h.timers[0].interval == pytest.approx(0.05)
    assert h.timers[0].started
    assert h.session.state is CaptureState.RECORDING
    assert notifier.states == [CaptureState.REQUESTING_PERMISSION, CaptureState.RECORDING]
    h.session.close()


def test_silence_auto_stops_once_and_submits(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()

    h.advance_to(4000)
    assert h.recorders[0].stop_calls == 0

    h.advance_to(5000)

    assert h.recorders[0].stop_calls == 1
    assert h.timers[0].cancelled
    assert h.session.stop_reason is StopReason.SILENCE
    assert h.session.state is CaptureState.TRANSCRIBING
    assert len(h.context.scheduled) == 1

    h.session._on_tick()
    assert h.recorders[0].stop_calls == 1

    h.run_scheduled()
    assert len(h.submitted) == 1
    assert h.session.state is CaptureState.IDLE
    assert h.session.last_recording is None


def test_manual_stop_prevents_later_auto_stop(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()
    h.advance_to(1200)

    audio = h.session.stop()

    assert audio is not None
    assert h.session.stop_reason is StopReason.USER
    assert h.timers[0].cancelled
    assert h.session.detector.cancelled

    h.now = 10_000
    h.session._on_tick()
    h.timers[0].tick()
    assert h.recorders[0].stop_calls == 1
    assert len(h.context.scheduled) == 1
    h.close_scheduled()


def test_stop_when_idle_is_noop(config, notifier) -> None:
    h = _Harness(config, notifier)

    assert h.session.stop() is None
    assert h.context.scheduled == []


def test_speech_keeps_recording_open(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()

    h.level = 0.6
    h.advance_to(3000)
    h.level = 0.0
    h.advance_to(7000)

    assert h.recorders[0].stop_calls == 0
    assert h.session.state is CaptureState.RECORDING

    h.advance_to(7050)
    assert h.recorders[0].stop_calls == 1
    h.close_scheduled()


def test_levels_are_reported_to_notifier(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()
    h.level = 0.4

    h.advance_to(100)

    assert [level for level, _ in notifier.levels] == [0.4, 0.4]
    h.session.close()


def test_permission_denied_returns_to_idle(config, notifier, monkeypatch) -> None:
    monkeypatch.setattr(_FakeRecorder, "start_error", MicrophonePermissionError("denied"))
    h = _Harness(config, notifier)

    assert h.session.start() is False

    assert h.session.state is CaptureState.IDLE
    assert h.timers == []
    assert "Microphone access required" in notifier.titles


def test_unavailable_device_is_reported(config, notifier, monkeypatch) -> None:
    monkeypatch.setattr(_FakeRecorder, "start_error", DeviceUnavailableError("no mic"))
    h = _Harness(config, notifier)

    assert h.session.start() is False

    assert h.session.state is CaptureState.IDLE
    assert "Recording unavailable" in notifier.titles


def test_empty_recording_is_not_submitted(config, notifier, monkeypatch) -> None:
    monkeypatch.setattr(_FakeRecorder, "duration", 0.0)
    h = _Harness(config, notifier)
    h.session.start()

    h.session.stop()

    assert h.context.scheduled == []
    assert h.session.state is CaptureState.IDLE
    assert "Nothing recorded" in notifier.titles


def test_failed_submission_discards_payload(config, notifier) -> None:
    class _FailingAPI:
        calls = 0

        async def transcribe(self, audio_base64: str) -> dict:
            _FailingAPI.calls += 1
            raise APIError("Internal error", status=500)

    pipeline = TranscriptionPipeline(_FailingAPI(), notifier)
    h = _Harness(config, notifier, submit=pipeline.submit)
    h.session.start()
    h.session.stop()
    assert h.session.last_recording is not None

    h.run_scheduled()

    assert _FailingAPI.calls == 1
    assert h.session.state is CaptureState.IDLE
    assert h.session.last_recording is None
    assert "Transcription failed" in notifier.titles


def test_start_refused_while_transcribing(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()
    h.session.stop()

    assert h.session.start() is False

    assert len(h.recorders) == 1
    assert "Please wait" in notifier.titles
    h.close_scheduled()


def test_pause_suspends_detection_and_resume_restarts_window(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()
    h.advance_to(3000)

    assert h.session.pause() is True
    assert h.recorders[0].paused
    assert h.session.state is CaptureState.PAUSED
    h.advance_to(20_000)
    assert h.recorders[0].stop_calls == 0

    assert h.session.resume() is True
    h.advance_to(24_000)
    assert h.recorders[0].stop_calls == 0
    h.advance_to(24_050)
    assert h.recorders[0].stop_calls == 1
    h.close_scheduled()


def test_stop_while_paused_submits(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()
    h.session.pause()

    assert h.session.stop() is not None
    assert len(h.context.scheduled) == 1
    h.close_scheduled()


def test_recorder_failure_returns_to_idle(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()

    h.session._on_recorder_error(DeviceUnavailableError("Microphone unavailable: gone"))

    assert h.timers[0].cancelled
    assert h.recorders[0].cancelled
    assert h.session.state is CaptureState.IDLE
    assert CaptureState.ERROR in notifier.states
    assert "Recording stopped" in notifier.titles
    assert h.session.stop() is None


def test_discard_releases_everything(config, notifier) -> None:
    h = _Harness(config, notifier)
    h.session.start()

    h.session.discard()

    assert h.timers[0].cancelled
    assert h.recorders[0].cancelled
    assert h.session.state is CaptureState.IDLE
    assert h.context.scheduled == []
    assert h.session.elapsed_seconds == 0.0


def test_second_session_takes_microphone_from_first(config, notifier) -> None:
    first = _Harness(config, notifier)
    second = _Harness(config, notifier, context=first.context)
    first.session.start()
    first.level = 0.8
    first.advance_to(500)

    assert second.session.start() is True

    assert first.session.state is CaptureState.IDLE
    assert first.timers[0].cancelled
    assert first.recorders[0].cancelled
    assert first.session.detector.cancelled
    assert first.recorders[0].stop_calls == 0
    assert first.context.device_lock.holder is second.recorders[0]
    assert second.session.state is CaptureState.RECORDING
    assert "Recording stopped" in notifier.titles

    first.now = 120_000
    first.session._on_tick()
    assert first.recorders[0].stop_calls == 0
    assert first.context.scheduled == []
    second.session.close()


def test_paused_time_is_excluded_from_duration_cap(config, notifier) -> None:
    config.set("voice", "max_duration_ms", value=1000)
    h = _Harness(config, notifier)
    h.level = 0.8
    h.session.start()
    h.advance_to(500)

    h.session.pause()
    h.advance_to(10_000)
    h.session.resume()
    h.advance_to(10_450)
    assert h.recorders[0].stop_calls == 0

    h.advance_to(10_500)
    assert h.recorders[0].stop_calls == 1
    assert h.session.stop_reason is StopReason.MAX_DURATION
    h.close_scheduled()
