"""
Turn-based duo practice.

Two users alternate responses within a shared scenario. The client keeps a
view of the session record and its messages, enforces turn order before
talking to the server, and treats the server as authoritative for scores,
turn and status.
"""

import logging
from typing import Any

from mirrorplay.common.api_client import APIClient, APIError
from mirrorplay.common.models import (
    DuoCompletion,
    DuoMessage,
    DuoSessionRecord,
    DuoStatus,
    DuoTurn,
    UserProgress,
)
from mirrorplay.common.notifier_base import AbstractNotifier, format_user_error
from mirrorplay.common.progress import refresh_progress

logger = logging.getLogger(__name__)

DEFAULT_MIN_MESSAGES_TO_COMPLETE = 4
DEFAULT_ROLE_A = "Person A"
DEFAULT_ROLE_B = "Person B"
DEFAULT_PHASE = "Practice"


class DuoError(Exception):
    """Base class for client-side duo guards."""


class NotYourTurnError(DuoError):
    """The other participant must respond first."""


class SessionNotActiveError(DuoError):
    """The session is pending or already completed."""


class DuoSession:
    """
    Client view of one duo-practice session.

    Args:
        api_client: API client
        notifier: Notification surface for failures and results
        record: Server session record
        is_host: Whether the current user created the session
        min_messages_to_complete: Messages before completion is offered
    """

    def __init__(
        self,
        api_client: APIClient,
        notifier: AbstractNotifier,
        record: DuoSessionRecord,
        is_host: bool,
        min_messages_to_complete: int = DEFAULT_MIN_MESSAGES_TO_COMPLETE,
    ):
        self.api_client = api_client
        self.notifier = notifier
        self.record = record
        self.is_host = is_host
        self.min_messages_to_complete = min_messages_to_complete

        self.messages: list[DuoMessage] = []
        self.scenario: dict[str, Any] = {}
        self.completion: DuoCompletion | None = None
        self.progress: UserProgress | None = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    async def invite(
        cls,
        api_client: APIClient,
        notifier: AbstractNotifier,
        partner_user_id: str,
        scenario_id: str,
        min_messages_to_complete: int = DEFAULT_MIN_MESSAGES_TO_COMPLETE,
    ) -> "DuoSession":
        """Create a pending session with the current user as host."""
        data = await api_client.invite_duo(partner_user_id, scenario_id)
        record = DuoSessionRecord.from_dict(data)
        logger.info(f"Duo invitation {record.id} sent to {partner_user_id}")
        return cls(api_client, notifier, record, True, min_messages_to_complete)

    @classmethod
    async def load(
        cls,
        api_client: APIClient,
        notifier: AbstractNotifier,
        session_id: str,
        min_messages_to_complete: int = DEFAULT_MIN_MESSAGES_TO_COMPLETE,
    ) -> "DuoSession":
        """Fetch a session with its messages and scenario."""
        session = cls(
            api_client,
            notifier,
            DuoSessionRecord(id=session_id),
            False,
            min_messages_to_complete,
        )
        await session.refresh()
        return session

    def apply_details(self, data: dict[str, Any]) -> None:
        """Replace local state with a session detail payload."""
        self.record = DuoSessionRecord.from_dict(data.get("session") or {})
        self.messages = [DuoMessage.from_dict(m) for m in data.get("messages") or []]
        self.scenario = data.get("scenario") or {}
        if "isHost" in data:
            self.is_host = bool(data["isHost"])

    async def refresh(self) -> None:
        """Re-read the session record and messages from the server."""
        self.apply_details(await self.api_client.get_duo_session(self.record.id))

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def status(self) -> DuoStatus:
        return self.record.status

    @property
    def current_turn(self) -> DuoTurn:
        return self.record.current_turn

    @property
    def my_turn(self) -> DuoTurn:
        return DuoTurn.HOST if self.is_host else DuoTurn.PARTNER

    @property
    def is_my_turn(self) -> bool:
        return self.current_turn is self.my_turn

    @property
    def my_role(self) -> str:
        if self.is_host:
            return self.scenario.get("roleA") or DEFAULT_ROLE_A
        return self.scenario.get("roleB") or DEFAULT_ROLE_B

    @property
    def partner_role(self) -> str:
        if self.is_host:
            return self.scenario.get("roleB") or DEFAULT_ROLE_B
        return self.scenario.get("roleA") or DEFAULT_ROLE_A

    @property
    def current_phase(self) -> str:
        phases = self.scenario.get("phases") or []
        if phases and isinstance(phases[0], dict):
            return phases[0].get("name") or DEFAULT_PHASE
        return DEFAULT_PHASE

    @property
    def can_complete(self) -> bool:
        """Completion is offered once enough messages were exchanged."""
        return (
            self.status is DuoStatus.ACTIVE
            and len(self.messages) >= self.min_messages_to_complete
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def accept(self) -> bool:
        """Accept a pending invitation as the partner."""
        if self.is_host or self.status is not DuoStatus.PENDING:
            logger.warning(f"Cannot accept session {self.record.id} ({self.status.value})")
            return False
        try:
            self.record = DuoSessionRecord.from_dict(
                await self.api_client.accept_duo(self.record.id)
            )
        except APIError as e:
            logger.error(f"Failed to accept duo session: {e}")
            self.notifier.show_notification(
                "Could not accept", format_user_error(str(e)), variant="destructive"
            )
            return False
        self.notifier.show_notification("Invitation accepted", "Let's practice together!")
        return True

    async def submit_response(self, text: str) -> DuoMessage | None:
        """
        Post this user's response for the current turn.

        Raises:
            SessionNotActiveError: The session is not active
            NotYourTurnError: The partner has the turn
        """
        text = text.strip()
        if not text:
            return None
        if self.status is not DuoStatus.ACTIVE:
            raise SessionNotActiveError(f"Session is {self.status.value}")
        if not self.is_my_turn:
            raise NotYourTurnError("Wait for your partner to respond")

        try:
            data = await self.api_client.respond_duo(
                self.record.id, text, self.my_role, self.current_phase
            )
        except APIError as e:
            logger.error(f"Failed to submit duo response: {e}")
            self.notifier.show_notification(
                "Response failed", format_user_error(str(e)), variant="destructive"
            )
            return None

        message_data = data.get("message")
        if isinstance(message_data, dict):
            message = DuoMessage.from_dict(message_data)
        else:
            message = DuoMessage(role=self.my_role, message=text)
        if message.score is None:
            message.score = data.get("score")
        if message.feedback is None:
            message.feedback = data.get("feedback")
        self.messages.append(message)

        next_turn = data.get("nextTurn")
        if next_turn:
            self.record.current_turn = DuoTurn.parse(next_turn)
        else:
            self.record.current_turn = self.current_turn.other()

        if message.score is not None:
            self.notifier.show_notification(
                f"Score: {message.score}", message.feedback or "Response submitted"
            )
        return message

    async def complete(self) -> DuoCompletion | None:
        """Finish the session; the server totals the scores."""
        if self.status is not DuoStatus.ACTIVE:
            raise SessionNotActiveError(f"Session is {self.status.value}")
        try:
            data = await self.api_client.complete_duo(self.record.id)
        except APIError as e:
            logger.error(f"Failed to complete duo session: {e}")
            self.notifier.show_notification(
                "Could not complete", format_user_error(str(e)), variant="destructive"
            )
            return None

        if isinstance(data.get("session"), dict):
            self.record = DuoSessionRecord.from_dict(data["session"])
        self.record.status = DuoStatus.COMPLETED
        self.completion = DuoCompletion.from_dict(data)
        self.record.host_score = self.completion.host_score
        self.record.partner_score = self.completion.partner_score
        self.notifier.show_notification(
            "Session complete!", f"You earned {self.completion.xp_reward} XP"
        )
        self.progress = await refresh_progress(self.api_client, self.notifier)
        return self.completion


async def list_pending(api_client: APIClient) -> list[dict[str, Any]]:
    """Invitations waiting for the current user to accept."""
    return list(await api_client.get_pending_duo())


async def list_active(api_client: APIClient) -> list[dict[str, Any]]:
    """Sessions the current user is taking part in."""
    return list(await api_client.get_active_duo())
