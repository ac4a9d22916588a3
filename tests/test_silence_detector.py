"""Tests for silence-triggered stop detection."""

from __future__ import annotations

import pytest

from mirrorplay.common.models import SilencePhase, StopReason
from mirrorplay.voice.silence_detector import SilenceDetector

TICK_MS = 50


def _run(detector: SilenceDetector, levels_at, start: int, end: int) -> list[int]:
    """Feed one sample per tick and return the times at which stop fired."""
    fired = []
    for now in range(start, end + 1, TICK_MS):
        if detector.update(levels_at(now), now):
            fired.append(now)
    return fired


def test_continuous_silence_stops_once_after_threshold() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000, loudness_floor=0.05)
    detector.reset(0)

    fired = _run(detector, lambda now: 0.0, TICK_MS, 5000)

    assert fired == [4050]
    assert detector.stop_reason is StopReason.SILENCE
    assert detector.phase is SilencePhase.SUBMITTING


def test_silence_equal_to_threshold_does_not_stop() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000)
    detector.reset(0)

    assert detector.update(0.0, 4000) is False
    assert detector.update(0.0, 4001) is True


def test_speech_restarts_the_silence_window() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000, loudness_floor=0.05)
    detector.reset(0)

    fired = _run(detector, lambda now: 0.5 if now <= 3000 else 0.0, TICK_MS, 8000)

    assert fired == [7050]
    assert detector.has_spoken is True


def test_level_at_floor_counts_as_silence() -> None:
    detector = SilenceDetector(silence_threshold_ms=1000, loudness_floor=0.05)
    detector.reset(0)

    fired = _run(detector, lambda now: 0.05, TICK_MS, 2000)

    assert fired == [1050]
    assert detector.has_spoken is False


def test_cancel_prevents_any_later_stop() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000)
    detector.reset(0)
    assert _run(detector, lambda now: 0.0, TICK_MS, 1200) == []

    detector.cancel()

    assert _run(detector, lambda now: 0.0, 1250, 10000) == []
    assert detector.cancelled is True
    assert detector.fired is False


def test_unarmed_detector_never_fires() -> None:
    detector = SilenceDetector(silence_threshold_ms=100)

    assert detector.update(0.0, 10_000) is False


def test_phases_progress_relative_to_threshold() -> None:
    detector = SilenceDetector(silence_threshold_ms=6000)
    detector.reset(0)

    detector.update(0.0, 2999)
    assert detector.phase is SilencePhase.ACTIVE
    detector.update(0.0, 3000)
    assert detector.phase is SilencePhase.THINKING
    detector.update(0.0, 5001)
    assert detector.phase is SilencePhase.PREPARING
    detector.update(0.9, 5100)
    assert detector.phase is SilencePhase.ACTIVE


def test_phases_scale_with_shorter_threshold() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000)
    detector.reset(0)

    detector.update(0.0, 2000)
    assert detector.phase is SilencePhase.THINKING
    detector.update(0.0, 3400)
    assert detector.phase is SilencePhase.PREPARING


def test_require_speech_ignores_leading_silence() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000, require_speech=True)
    detector.reset(0)

    assert _run(detector, lambda now: 0.0, TICK_MS, 10_000) == []
    assert detector.silence_ms == 0.0

    fired = _run(detector, lambda now: 0.5 if now == 10_050 else 0.0, 10_050, 15_000)
    assert fired == [14_100]


def test_max_duration_stops_continuous_speech() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000, max_duration_ms=1000)
    detector.reset(0)

    fired = _run(detector, lambda now: 0.8, TICK_MS, 3000)

    assert fired == [1000]
    assert detector.stop_reason is StopReason.MAX_DURATION


def test_resume_restarts_window_after_pause() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000)
    detector.reset(0)
    detector.update(0.0, 3000)

    detector.resume(20_000)

    assert detector.update(0.0, 20_050) is False
    assert detector.phase is SilencePhase.ACTIVE
    assert detector.update(0.0, 24_050) is True


def test_paused_time_does_not_count_toward_max_duration() -> None:
    detector = SilenceDetector(silence_threshold_ms=4000, max_duration_ms=1000)
    detector.reset(0)
    assert _run(detector, lambda now: 0.8, TICK_MS, 500) == []

    detector.pause(500)
    detector.resume(10_000)

    fired = _run(detector, lambda now: 0.8, 10_050, 12_000)
    assert fired == [10_500]
    assert detector.stop_reason is StopReason.MAX_DURATION


def test_reset_rearms_after_stop() -> None:
    detector = SilenceDetector(silence_threshold_ms=100)
    detector.reset(0)
    assert detector.update(0.0, 150) is True

    detector.reset(1000)

    assert detector.fired is False
    assert detector.update(0.0, 1150) is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"silence_threshold_ms": 0},
        {"silence_threshold_ms": -5},
        {"loudness_floor": 1.0},
        {"loudness_floor": -0.1},
    ],
)
def test_invalid_settings_are_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        SilenceDetector(**kwargs)
