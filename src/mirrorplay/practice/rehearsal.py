"""
Rehearsal conversations against a scenario.

The server drives the conversation: phase, escalation, completion, score
and feedback all come from its replies. The client only records them.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from mirrorplay.common.api_client import APIClient, APIError, UsageLimitError
from mirrorplay.common.models import (
    RehearsalFeedback,
    RehearsalMessage,
    RehearsalReply,
    UserProgress,
)
from mirrorplay.common.notifier_base import AbstractNotifier, format_user_error
from mirrorplay.common.progress import refresh_progress

logger = logging.getLogger(__name__)

DEFAULT_XP_EARNED = 30


@dataclass
class CustomScenario:
    """A user-authored scenario sent alongside each message."""

    id: str
    context: str = ""
    prompt: str = ""
    tips: list[str] = field(default_factory=list)


@dataclass
class RehearsalState:
    current_phase: int = 0
    escalation_level: int = 1
    completed: bool = False
    messages: list[RehearsalMessage] = field(default_factory=list)
    score: int | None = None
    feedback: RehearsalFeedback | None = None
    xp_earned: int | None = None


class RehearsalSession:
    """
    One rehearsal conversation.

    Exactly one of scenario_id or custom_scenario identifies the scenario.
    """

    def __init__(
        self,
        api_client: APIClient,
        notifier: AbstractNotifier,
        scenario_id: str | None = None,
        custom_scenario: CustomScenario | None = None,
    ):
        if not scenario_id and custom_scenario is None:
            raise ValueError("A scenario id or custom scenario is required")
        self.api_client = api_client
        self.notifier = notifier
        self.scenario_id = scenario_id
        self.custom_scenario = custom_scenario
        self.state = RehearsalState()
        self.progress: UserProgress | None = None

        self._pending = False
        self._pending_lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._pending

    def build_payload(self, text: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": text,
            "currentPhase": self.state.current_phase,
            "escalationLevel": self.state.escalation_level,
            "messageHistory": [m.to_dict() for m in self.state.messages],
        }
        if self.custom_scenario is not None:
            payload["customScenarioId"] = self.custom_scenario.id
            payload["customContext"] = self.custom_scenario.context
            payload["customPrompt"] = self.custom_scenario.prompt
            payload["customTips"] = list(self.custom_scenario.tips)
        else:
            payload["scenarioId"] = self.scenario_id
        return payload

    async def send_message(self, text: str) -> RehearsalReply | None:
        """
        Send one user message and apply the server's reply.

        Blank text, a completed rehearsal, or a send already in flight is
        ignored. On failure the state is left untouched.
        """
        text = text.strip()
        if not text or self.state.completed:
            return None

        with self._pending_lock:
            if self._pending:
                logger.debug("Rehearsal message ignored, previous send still pending")
                return None
            self._pending = True

        try:
            data = await self.api_client.send_rehearsal_message(self.build_payload(text))
            reply = RehearsalReply.from_dict(data)
        except UsageLimitError as e:
            logger.warning(f"Usage limit reached: {e}")
            self.notifier.prompt_upgrade(e.message, e.tier)
            return None
        except APIError as e:
            logger.error(f"Rehearsal message failed: {e}")
            self.notifier.show_notification(
                "Message failed", format_user_error(str(e)), variant="destructive"
            )
            return None
        finally:
            with self._pending_lock:
                self._pending = False

        self._apply(text, reply)
        if reply.completed:
            self.progress = await refresh_progress(self.api_client, self.notifier)
        return reply

    def _apply(self, text: str, reply: RehearsalReply) -> None:
        state = self.state
        state.messages.append(RehearsalMessage("user", text))
        state.messages.append(RehearsalMessage("assistant", reply.response))
        if reply.next_phase is not None:
            state.current_phase = reply.next_phase
        if reply.escalation_level is not None:
            state.escalation_level = reply.escalation_level
        if reply.score is not None:
            state.score = reply.score
        if reply.feedback is not None:
            state.feedback = reply.feedback

        if reply.completed:
            state.completed = True
            state.xp_earned = (
                reply.xp_earned if reply.xp_earned is not None else DEFAULT_XP_EARNED
            )
            logger.info(f"Rehearsal completed with score {state.score}")
            self.notifier.show_notification(
                "Rehearsal complete!", f"You earned {state.xp_earned} XP"
            )
