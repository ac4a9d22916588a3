"""
Shared data models for the Mirror Play client.

Defines state enums and data classes used across the voice and practice
components. API payloads are parsed with from_dict() classmethods that
tolerate missing keys.
"""

import base64
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CaptureState(Enum):
    """States of a capture session, as shown to the user."""

    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    RECORDING = "recording"
    PAUSED = "paused"
    TRANSCRIBING = "transcribing"  # Payload submitted, waiting for the server
    ERROR = "error"


class RecorderState(Enum):
    """Lifecycle of the capture device."""

    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


class SilencePhase(Enum):
    """How long the speaker has been quiet, for display."""

    ACTIVE = "active"
    THINKING = "thinking"
    PREPARING = "preparing"
    SUBMITTING = "submitting"


class StopReason(Enum):
    """Why a recording stopped."""

    SILENCE = "silence"
    MAX_DURATION = "max_duration"
    USER = "user"


class DuoStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Any) -> "DuoStatus":
        try:
            return cls(str(value))
        except ValueError:
            return cls.PENDING


class DuoTurn(Enum):
    HOST = "host"
    PARTNER = "partner"

    @classmethod
    def parse(cls, value: Any) -> "DuoTurn":
        try:
            return cls(str(value))
        except ValueError:
            return cls.HOST

    def other(self) -> "DuoTurn":
        return DuoTurn.PARTNER if self is DuoTurn.HOST else DuoTurn.HOST


class SubscriptionTier(Enum):
    FREE = "free"
    PEACE_PLUS = "peace_plus"
    PRO_MIND = "pro_mind"

    @classmethod
    def parse(cls, value: Any) -> "SubscriptionTier":
        try:
            return cls(str(value))
        except ValueError:
            return cls.FREE


@dataclass
class RecordedAudio:
    """Finalized recording payload."""

    data: bytes
    mime_type: str = "audio/wav"
    duration: float = 0.0  # Seconds of captured audio, paused time excluded
    sample_rate: int = 16000
    channels: int = 1

    def to_base64(self) -> str:
        """Encode the payload into its transferable text form."""
        return base64.b64encode(self.data).decode("ascii")

    @property
    def is_empty(self) -> bool:
        return self.duration <= 0.0


@dataclass
class TranscriptionResult:
    """Result of a transcription request."""

    text: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TranscriptionResult":
        return cls(text=str(data.get("text") or "").strip())


@dataclass
class RehearsalMessage:
    """One message in a rehearsal conversation."""

    role: str  # 'user' or 'assistant'
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class RehearsalFeedback:
    strengths: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    overall_tip: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RehearsalFeedback":
        return cls(
            strengths=list(data.get("strengths") or []),
            improvements=list(data.get("improvements") or []),
            overall_tip=data.get("overallTip", "") or "",
        )


@dataclass
class RehearsalReply:
    """Server response to a rehearsal message."""

    response: str
    next_phase: int | None = None
    escalation_level: int | None = None
    completed: bool = False
    score: int | None = None
    feedback: RehearsalFeedback | None = None
    xp_earned: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RehearsalReply":
        feedback_data = data.get("feedback")
        return cls(
            response=data.get("response", "") or "",
            next_phase=data.get("nextPhase"),
            escalation_level=data.get("escalationLevel"),
            completed=bool(data.get("completed", False)),
            score=data.get("score"),
            feedback=RehearsalFeedback.from_dict(feedback_data)
            if isinstance(feedback_data, dict)
            else None,
            xp_earned=data.get("xpEarned"),
        )


@dataclass
class VoiceAnalysis:
    """Result of a voice practice analysis."""

    score: int = 0
    tone: str = ""
    feedback: str = ""
    transcription: str = ""
    xp_earned: int = 0
    pp_earned: int = 0
    streak_bonus: int = 0
    new_badges: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VoiceAnalysis":
        return cls(
            score=data.get("score", 0) or 0,
            tone=data.get("tone", "") or "",
            feedback=data.get("feedback", "") or "",
            transcription=data.get("transcription", "") or "",
            xp_earned=data.get("xpEarned", 0) or 0,
            pp_earned=data.get("ppEarned", 0) or 0,
            streak_bonus=data.get("streakBonus", 0) or 0,
            new_badges=list(data.get("newBadges") or []),
        )


@dataclass
class UserProgress:
    """XP, level and streak totals for the signed-in user."""

    total_xp: int = 0
    total_pp: int = 0
    level: int = 1
    current_streak: int = 0
    practice_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProgress":
        return cls(
            total_xp=data.get("totalXp", 0) or 0,
            total_pp=data.get("totalPp", 0) or 0,
            level=data.get("level", 1) or 1,
            current_streak=data.get("currentStreak", 0) or 0,
            practice_count=data.get("practiceCount", 0) or 0,
        )


@dataclass
class DuoMessage:
    """One turn in a duo-practice exchange."""

    role: str  # Scenario role label, e.g. "Person A"
    message: str
    user_id: str = ""
    id: str = ""
    score: int | None = None
    feedback: str | None = None
    created_at: str = ""
    ts: float = field(default_factory=time.time)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DuoMessage":
        return cls(
            role=data.get("role", ""),
            message=data.get("message", ""),
            user_id=data.get("userId", ""),
            id=data.get("id", ""),
            score=data.get("score"),
            feedback=data.get("feedback"),
            created_at=data.get("createdAt", "") or "",
        )


@dataclass
class DuoSessionRecord:
    """Server record of a duo session."""

    id: str
    scenario_id: str = ""
    host_user_id: str = ""
    partner_user_id: str = ""
    status: DuoStatus = DuoStatus.PENDING
    current_turn: DuoTurn = DuoTurn.HOST
    host_score: int = 0
    partner_score: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DuoSessionRecord":
        return cls(
            id=data.get("id", ""),
            scenario_id=data.get("scenarioId", ""),
            host_user_id=data.get("hostUserId", ""),
            partner_user_id=data.get("partnerUserId", ""),
            status=DuoStatus.parse(data.get("status", "pending")),
            current_turn=DuoTurn.parse(data.get("currentTurn", "host")),
            host_score=data.get("hostScore", 0) or 0,
            partner_score=data.get("partnerScore", 0) or 0,
        )


@dataclass
class DuoCompletion:
    host_score: int = 0
    partner_score: int = 0
    xp_reward: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DuoCompletion":
        return cls(
            host_score=data.get("hostScore", 0) or 0,
            partner_score=data.get("partnerScore", 0) or 0,
            xp_reward=data.get("xpReward", 0) or 0,
        )


@dataclass
class UsageInfo:
    """Daily usage against the subscription tier's limit."""

    tier: SubscriptionTier = SubscriptionTier.FREE
    daily_limit: int | None = None  # None means unlimited
    used_today: int = 0
    remaining: int | None = None
    allowed: bool = True

    @staticmethod
    def _count(value: Any) -> int | None:
        if value is None or value == "unlimited":
            return None
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UsageInfo":
        return cls(
            tier=SubscriptionTier.parse(data.get("tier", "free")),
            daily_limit=cls._count(data.get("dailyLimit", data.get("limit"))),
            used_today=data.get("usedToday", 0) or 0,
            remaining=cls._count(data.get("remainingToday", data.get("remaining"))),
            allowed=bool(data.get("allowed", True)),
        )


# Type alias for state-change callbacks
StateCallback = Callable[[CaptureState], None]
