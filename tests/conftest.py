"""Shared test doubles for the Mirror Play client tests."""

from __future__ import annotations

import pytest

from mirrorplay.common.config import ClientConfig
from mirrorplay.common.models import CaptureState, SilencePhase
from mirrorplay.common.notifier_base import AbstractNotifier


class RecordingNotifier(AbstractNotifier):
    def __init__(self) -> None:
        super().__init__()
        self.states: list[CaptureState] = []
        self.notifications: list[tuple[str, str, str]] = []
        self.upgrades: list[tuple[str, str]] = []
        self.levels: list[tuple[float, SilencePhase]] = []

    def set_state(self, state: CaptureState) -> None:
        self.state = state
        self.states.append(state)

    def show_notification(self, title: str, message: str, variant: str = "default") -> None:
        self.notifications.append((title, message, variant))

    def show_level(self, level: float, phase: SilencePhase) -> None:
        self.levels.append((level, phase))

    def prompt_upgrade(self, message: str, tier: str) -> None:
        self.upgrades.append((message, tier))

    @property
    def titles(self) -> list[str]:
        return [title for title, _, _ in self.notifications]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config(tmp_path, monkeypatch) -> ClientConfig:
    monkeypatch.delenv("MIRRORPLAY_BASE_URL", raising=False)
    monkeypatch.delenv("MIRRORPLAY_TOKEN", raising=False)
    return ClientConfig(tmp_path / "client.yaml")
