"""Tests for the transcription/submit pipeline."""

from __future__ import annotations

import asyncio
import base64

import pytest

from mirrorplay.common.api_client import (
    APIError,
    NotAuthenticatedError,
    ServerUnavailableError,
    UsageLimitError,
)
from mirrorplay.common.models import CaptureState, RecordedAudio
from mirrorplay.voice.transcription import SubmissionInProgressError, TranscriptionPipeline


class _FakeAPI:
    def __init__(self, text: str = "hello there", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.transcribe_calls: list[str] = []
        self.analyze_calls: list[tuple] = []
        self.gate: asyncio.Event | None = None
        self.progress_error: Exception | None = None

    async def transcribe(self, audio_base64: str) -> dict:
        self.transcribe_calls.append(audio_base64)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return {"text": self.text}

    async def analyze_voice(self, audio_base64, duration, prompt, category) -> dict:
        self.analyze_calls.append((audio_base64, duration, prompt, category))
        if self.error is not None:
            raise self.error
        return {
            "score": 82,
            "tone": "calm",
            "feedback": "Clear and kind.",
            "transcription": "I hear you",
            "xpEarned": 15,
        }

    async def get_progress(self) -> dict:
        if self.progress_error is not None:
            raise self.progress_error
        return {"totalXp": 315, "level": 3, "currentStreak": 4, "practiceCount": 21}


def _audio() -> RecordedAudio:
    return RecordedAudio(data=b"RIFF-data", duration=3.2)


def test_encode_produces_base64_text() -> None:
    encoded = TranscriptionPipeline.encode(_audio())

    assert base64.b64decode(encoded) == b"RIFF-data"


def test_transcript_goes_to_send_message(notifier) -> None:
    api = _FakeAPI(text="  I understand how you feel  ")
    sent: list[str] = []
    pipeline = TranscriptionPipeline(api, notifier, send_message=sent.append)

    result = asyncio.run(pipeline.submit(_audio()))

    assert result == "I understand how you feel"
    assert sent == ["I understand how you feel"]
    assert api.transcribe_calls == [base64.b64encode(b"RIFF-data").decode("ascii")]
    assert notifier.states == [CaptureState.TRANSCRIBING, CaptureState.IDLE]
    assert pipeline.pending is False


def test_async_send_message_is_awaited(notifier) -> None:
    sent: list[str] = []

    async def send(text: str) -> None:
        sent.append(text)

    pipeline = TranscriptionPipeline(_FakeAPI(), notifier, send_message=send)

    asyncio.run(pipeline.submit(_audio()))

    assert sent == ["hello there"]


def test_on_state_callback_replaces_notifier_state(notifier) -> None:
    states: list[CaptureState] = []
    pipeline = TranscriptionPipeline(_FakeAPI(), notifier, on_state=states.append)

    asyncio.run(pipeline.submit(_audio()))

    assert states == [CaptureState.TRANSCRIBING, CaptureState.IDLE]
    assert notifier.states == []


def test_empty_transcript_is_an_error(notifier) -> None:
    sent: list[str] = []
    pipeline = TranscriptionPipeline(_FakeAPI(text="   "), notifier, send_message=sent.append)

    assert asyncio.run(pipeline.submit(_audio())) is None

    assert sent == []
    title, message, variant = notifier.notifications[0]
    assert title == "Transcription failed"
    assert "type your response" in message
    assert variant == "destructive"


def test_usage_limit_routes_to_upgrade_prompt(notifier) -> None:
    error = UsageLimitError("Daily voice limit reached", tier="free", limit=3)
    pipeline = TranscriptionPipeline(_FakeAPI(error=error), notifier)

    assert asyncio.run(pipeline.submit(_audio())) is None

    assert notifier.upgrades == [("Daily voice limit reached", "free")]
    assert notifier.notifications == []
    assert pipeline.pending is False


def test_not_authenticated_prompts_sign_in(notifier) -> None:
    pipeline = TranscriptionPipeline(
        _FakeAPI(error=NotAuthenticatedError("Unauthorized", status=401)), notifier
    )

    asyncio.run(pipeline.submit(_audio()))

    assert notifier.titles == ["Sign in required"]


@pytest.mark.parametrize(
    "error",
    [
        APIError("Failed to transcribe audio", status=500),
        ServerUnavailableError("Request timeout"),
    ],
)
def test_other_failures_suggest_retry_or_typing(notifier, error) -> None:
    pipeline = TranscriptionPipeline(_FakeAPI(error=error), notifier)

    asyncio.run(pipeline.submit(_audio()))

    title, message, _ = notifier.notifications[0]
    assert title == "Transcription failed"
    assert message.endswith("Please try again or type your response.")
    assert notifier.states[-1] is CaptureState.IDLE


def test_second_submit_while_pending_is_refused(notifier) -> None:
    api = _FakeAPI()
    pipeline = TranscriptionPipeline(api, notifier)

    async def _run() -> str | None:
        api.gate = asyncio.Event()
        first = asyncio.create_task(pipeline.submit(_audio()))
        await asyncio.sleep(0)
        assert pipeline.pending is True

        with pytest.raises(SubmissionInProgressError):
            await pipeline.submit(_audio())

        api.gate.set()
        return await first

    assert asyncio.run(_run()) == "hello there"
    assert len(api.transcribe_calls) == 1
    assert pipeline.pending is False


def test_analyze_returns_scored_result(notifier) -> None:
    api = _FakeAPI()
    pipeline = TranscriptionPipeline(api, notifier)

    analysis = asyncio.run(pipeline.analyze(_audio(), "Respond to criticism", "conflict"))

    assert analysis is not None
    assert analysis.score == 82
    assert analysis.transcription == "I hear you"
    assert pipeline.last_analysis is analysis
    _, duration, prompt, category = api.analyze_calls[0]
    assert duration == pytest.approx(3.2)
    assert (prompt, category) == ("Respond to criticism", "conflict")
    assert notifier.titles == ["Score: 82", "Level 3"]
    assert pipeline.progress.total_xp == 315
    assert pipeline.progress.current_streak == 4


def test_analyze_daily_limit_prompts_upgrade(notifier) -> None:
    error = UsageLimitError("Daily limit reached", tier="free")
    pipeline = TranscriptionPipeline(_FakeAPI(error=error), notifier)

    assert asyncio.run(pipeline.analyze(_audio(), "p", "c")) is None

    assert notifier.upgrades == [("Daily limit reached", "free")]
    assert pipeline.last_analysis is None


def test_analyze_survives_failed_progress_refresh(notifier) -> None:
    api = _FakeAPI()
    api.progress_error = ServerUnavailableError("Connection error: refused")
    pipeline = TranscriptionPipeline(api, notifier)

    analysis = asyncio.run(pipeline.analyze(_audio(), "p", "c"))

    assert analysis is not None and analysis.score == 82
    assert pipeline.progress is None
    assert notifier.titles == ["Score: 82"]


def test_analyze_failure_skips_progress_refresh(notifier) -> None:
    api = _FakeAPI(error=APIError("Internal error", status=500))
    api.progress_error = AssertionError("progress must not be read")
    pipeline = TranscriptionPipeline(api, notifier)

    assert asyncio.run(pipeline.analyze(_audio(), "p", "c")) is None
    assert pipeline.progress is None
