"""Progress refresh after a scored submission."""

import logging

from mirrorplay.common.api_client import APIClient, APIError
from mirrorplay.common.models import UserProgress
from mirrorplay.common.notifier_base import AbstractNotifier

logger = logging.getLogger(__name__)


async def refresh_progress(
    api_client: APIClient, notifier: AbstractNotifier
) -> UserProgress | None:
    """
    Re-read the user's totals and show them.

    The score has already been recorded by the time this runs, so a failed
    read is logged and otherwise ignored.
    """
    try:
        progress = UserProgress.from_dict(await api_client.get_progress())
    except APIError as e:
        logger.warning(f"Could not refresh progress: {e}")
        return None

    logger.debug(f"Progress: level {progress.level}, {progress.total_xp} XP")
    notifier.show_notification(
        f"Level {progress.level}",
        f"{progress.total_xp} XP total, {progress.current_streak}-day streak",
    )
    return progress
