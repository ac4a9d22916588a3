"""
Application context for the Mirror Play client.

Holds the long-lived services that components receive explicitly instead of
reaching for module globals: configuration, the API client, the notifier,
the microphone lock and a background asyncio loop for network calls.
"""

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Coroutine
from typing import Any

from mirrorplay.common.api_client import APIClient
from mirrorplay.common.config import ClientConfig
from mirrorplay.common.notifier_base import AbstractNotifier
from mirrorplay.voice.audio_recorder import DeviceLock

logger = logging.getLogger(__name__)


class EventLoopThread:
    """An asyncio event loop running forever on a daemon thread."""

    def __init__(self, name: str = "mirrorplay-loop"):
        self.name = name
        self.loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout=5.0):
            raise RuntimeError("Event loop failed to start")

    def _run(self) -> None:
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self._ready.set()
        self.loop.run_forever()

    def schedule(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future[Any]:
        """Schedule a coroutine on the loop from any thread."""
        if self.loop is None:
            coro.close()
            raise RuntimeError("Event loop not running")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(self) -> None:
        if self.loop is None:
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self.loop.close()
        self.loop = None
        self._thread = None


class AppContext:
    """
    Services shared by every flow in one client process.

    Created once at startup and closed at exit.
    """

    def __init__(
        self,
        config: ClientConfig,
        notifier: AbstractNotifier,
        api_client: APIClient | None = None,
        device_lock: DeviceLock | None = None,
    ):
        self.config = config
        self.notifier = notifier
        self.api_client = api_client or APIClient(
            base_url=config.base_url,
            token=config.token,
            timeout=config.get("server", "timeout", default=30),
            transcription_timeout=config.get(
                "server", "transcription_timeout", default=120
            ),
        )
        self.device_lock = device_lock or DeviceLock()
        self._loop_thread = EventLoopThread()

    def start(self) -> "AppContext":
        self._loop_thread.start()
        return self

    def schedule(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future[Any]:
        """Run a coroutine on the background loop without waiting."""
        return self._loop_thread.schedule(coro)

    def run(self, coro: Coroutine[Any, Any, Any], timeout: float | None = None) -> Any:
        """Run a coroutine on the background loop and wait for its result."""
        return self.schedule(coro).result(timeout=timeout)

    def close(self) -> None:
        if self._loop_thread.loop is not None:
            try:
                self.run(self.api_client.close(), timeout=5.0)
            except Exception as e:
                logger.debug(f"Failed to close API client: {e}")
        self._loop_thread.stop()

    def __enter__(self) -> "AppContext":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
