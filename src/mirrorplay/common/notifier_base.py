"""
Abstract base class for user-facing notification surfaces.

Defines the interface that front ends (the console CLI, or a GUI) implement
to reflect capture state and show non-blocking messages.
"""

from abc import ABC, abstractmethod

from mirrorplay.common.models import CaptureState, SilencePhase


class AbstractNotifier(ABC):
    """
    Notification surface for capture state, levels and messages.

    Implementations must be callable from any thread: capture sessions
    report from the timer and recorder threads, submissions from the event
    loop thread.
    """

    def __init__(self, app_name: str = "Mirror Play"):
        self.app_name = app_name
        self.state = CaptureState.IDLE

    @abstractmethod
    def set_state(self, state: CaptureState) -> None:
        """
        Reflect a new capture state (idle, recording, transcribing, ...).

        Args:
            state: New capture state
        """
        pass

    @abstractmethod
    def show_notification(self, title: str, message: str, variant: str = "default") -> None:
        """
        Show a non-blocking message.

        Args:
            title: Short headline
            message: Body text
            variant: "default" or "destructive"
        """
        pass

    def show_level(self, level: float, phase: SilencePhase) -> None:
        """
        Show the live input level. Optional for implementations.

        Args:
            level: Normalized loudness in [0, 1]
            phase: Current silence phase
        """
        pass

    def prompt_upgrade(self, message: str, tier: str) -> None:
        """
        Route a usage-limit failure to an upgrade prompt.

        Default implementation shows a notification.
        """
        self.show_notification(
            "Daily limit reached",
            f"{message} (current plan: {tier})",
            variant="destructive",
        )


def format_user_error(error_msg: str) -> str:
    """
    Format error messages to be user-friendly for non-technical users.

    Args:
        error_msg: Raw error message

    Returns:
        Short message with a troubleshooting hint where one applies
    """
    error_lower = error_msg.lower()

    if "connection" in error_lower and ("refused" in error_lower or "error" in error_lower):
        return "Cannot reach Mirror Play. Check your internet connection and try again."

    if "timeout" in error_lower or "timed out" in error_lower:
        return "The server took too long to respond. Please try again."

    if "ssl" in error_lower or "certificate" in error_lower:
        return "Secure connection failed. Check the server address in your settings."

    if "network" in error_lower or "unreachable" in error_lower:
        return "Network error. Check your internet connection."

    if "permission" in error_lower or "denied" in error_lower:
        return "Microphone access is required. Allow access and try again."

    lines = error_msg.split("\n")
    main_error = lines[0] if lines else error_msg
    if len(main_error) > 150:
        main_error = main_error[:147] + "..."
    return main_error
