"""
Submission of finalized recordings to the server.

A pipeline sends one recording at a time: while a submission is pending a
second one is refused before any network call. Transcripts are handed to the
same send callable that typed input uses, so voice and typed answers take
one path from there on.
"""

import inspect
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any

from mirrorplay.common.api_client import (
    APIClient,
    APIError,
    NotAuthenticatedError,
    UsageLimitError,
)
from mirrorplay.common.models import (
    CaptureState,
    RecordedAudio,
    StateCallback,
    TranscriptionResult,
    UserProgress,
    VoiceAnalysis,
)
from mirrorplay.common.notifier_base import AbstractNotifier, format_user_error
from mirrorplay.common.progress import refresh_progress

logger = logging.getLogger(__name__)

SendCallback = Callable[[str], Awaitable[Any] | Any]


class SubmissionInProgressError(Exception):
    """A submission is already pending for this pipeline."""


class EmptyTranscriptError(Exception):
    """The server returned no text for the recording."""


class TranscriptionPipeline:
    """
    Encodes recordings and submits them for transcription or analysis.

    Failures are reported through the notifier and never raised, except for
    SubmissionInProgressError which guards against concurrent submissions.
    """

    def __init__(
        self,
        api_client: APIClient,
        notifier: AbstractNotifier,
        send_message: SendCallback | None = None,
        on_state: StateCallback | None = None,
    ):
        self.api_client = api_client
        self.notifier = notifier
        self.send_message = send_message
        self.on_state = on_state

        self._pending = False
        self._pending_lock = threading.Lock()
        self.last_transcription: str = ""
        self.last_analysis: VoiceAnalysis | None = None
        self.progress: UserProgress | None = None

    @staticmethod
    def encode(audio: RecordedAudio) -> str:
        """Encode a payload for transfer."""
        return audio.to_base64()

    @property
    def pending(self) -> bool:
        return self._pending

    def _begin(self) -> None:
        with self._pending_lock:
            if self._pending:
                raise SubmissionInProgressError("A recording is already being submitted")
            self._pending = True
        self._set_state(CaptureState.TRANSCRIBING)

    def _end(self) -> None:
        with self._pending_lock:
            self._pending = False
        self._set_state(CaptureState.IDLE)

    def _set_state(self, state: CaptureState) -> None:
        if self.on_state:
            self.on_state(state)
        else:
            self.notifier.set_state(state)

    async def submit(self, audio: RecordedAudio) -> str | None:
        """
        Transcribe a recording and pass the text to send_message.

        Returns:
            The transcript, or None if the submission failed

        Raises:
            SubmissionInProgressError: Another submission is pending
        """
        self._begin()
        try:
            payload = self.encode(audio)
            logger.info(f"Submitting {audio.duration:.1f}s of audio for transcription")
            result = TranscriptionResult.from_dict(await self.api_client.transcribe(payload))
            if not result.text:
                raise EmptyTranscriptError("No speech was recognized in the recording")

            self.last_transcription = result.text
            logger.info(f"Transcription received ({len(result.text)} chars)")
        except Exception as e:
            self._report_failure("Transcription failed", e)
            return None
        finally:
            self._end()

        if self.send_message is not None:
            sent = self.send_message(result.text)
            if inspect.isawaitable(sent):
                await sent
        return result.text

    async def analyze(
        self, audio: RecordedAudio, prompt: str, category: str
    ) -> VoiceAnalysis | None:
        """
        Submit a spoken answer to a practice prompt for scoring.

        Raises:
            SubmissionInProgressError: Another submission is pending
        """
        self._begin()
        try:
            data = await self.api_client.analyze_voice(
                self.encode(audio), audio.duration, prompt, category
            )
            analysis = VoiceAnalysis.from_dict(data)
        except Exception as e:
            self._report_failure("Analysis failed", e)
            return None
        finally:
            self._end()

        self.last_analysis = analysis
        logger.info(f"Voice analysis score: {analysis.score}")
        if analysis.xp_earned:
            self.notifier.show_notification(
                f"Score: {analysis.score}", f"+{analysis.xp_earned} XP"
            )
        self.progress = await refresh_progress(self.api_client, self.notifier)
        return analysis

    def _report_failure(self, title: str, error: Exception) -> None:
        """Route a failed submission to the right user-facing message."""
        if isinstance(error, UsageLimitError):
            logger.warning(f"Usage limit reached: {error}")
            self.notifier.prompt_upgrade(error.message, error.tier)
        elif isinstance(error, NotAuthenticatedError):
            logger.warning(f"Not authenticated: {error}")
            self.notifier.show_notification(
                "Sign in required",
                "Your session has expired. Sign in and try again.",
                variant="destructive",
            )
        elif isinstance(error, EmptyTranscriptError):
            logger.warning(str(error))
            self.notifier.show_notification(
                title,
                "We couldn't hear anything. Please try again or type your response.",
                variant="destructive",
            )
        elif isinstance(error, APIError):
            logger.error(f"{title}: {error}")
            self.notifier.show_notification(
                title,
                f"{format_user_error(str(error))} Please try again or type your response.",
                variant="destructive",
            )
        else:
            logger.exception(f"{title}: unexpected error")
            self.notifier.show_notification(
                title,
                "Please try again or type your response.",
                variant="destructive",
            )
