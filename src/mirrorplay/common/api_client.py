"""
API client for the Mirror Play server.

Handles:
- JSON requests to the REST API with bearer-token authentication
- Mapping HTTP failures onto a small error taxonomy
- aiohttp session lifecycle (one session per event loop)
"""

import asyncio
import json
import logging
import platform
from typing import Any

import aiohttp

from mirrorplay.common.version import __version__

logger = logging.getLogger(__name__)

CLIENT_VERSION = __version__


class APIError(Exception):
    """Raised when the server rejects a request."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        self.message = message
        super().__init__(message)


class NotAuthenticatedError(APIError):
    """Missing or expired credentials (HTTP 401)."""


class UsageLimitError(APIError):
    """Daily usage cap for the subscription tier was reached."""

    def __init__(
        self,
        message: str,
        status: int | None = 402,
        tier: str = "free",
        limit: int | None = None,
        used_today: int | None = None,
    ):
        self.tier = tier
        self.limit = limit
        self.used_today = used_today
        super().__init__(message, status=status)


class ServerUnavailableError(APIError):
    """Connection, TLS or timeout failure before a response arrived."""


class APIClient:
    """
    HTTP client for the Mirror Play REST API.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        token: str | None = None,
        timeout: int = 30,
        transcription_timeout: int = 120,
    ):
        """
        Initialize the API client.

        Args:
            base_url: Server base URL, e.g. https://mirrorplay.example
            token: Bearer token
            timeout: Default request timeout in seconds
            transcription_timeout: Timeout for audio uploads
        """
        self.base_url = base_url.rstrip("/")
        self.token = token or None
        self.timeout = timeout
        self.transcription_timeout = transcription_timeout

        self._session: aiohttp.ClientSession | None = None
        self._session_loop: asyncio.AbstractEventLoop | None = None

        logger.info(f"API Client initialized: {self.base_url}")

    def __del__(self):
        if self._session and not self._session.closed:
            logger.warning(
                "APIClient being destroyed with unclosed session. "
                "Please call close() explicitly."
            )

    def _get_headers(self) -> dict[str, str]:
        """Get request headers including auth token."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"MirrorPlay-Client/{CLIENT_VERSION} ({platform.system()})",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session bound to the running loop."""
        loop = asyncio.get_running_loop()

        if self._session is not None and not self._session.closed:
            if self._session_loop is loop:
                return self._session
            # Sessions cannot be shared across event loops
            logger.debug("Event loop changed, recreating aiohttp session")
            try:
                await self._session.close()
            except Exception:
                logger.debug("Failed to close session from previous loop")

        connector = aiohttp.TCPConnector(force_close=False, enable_cleanup_closed=True)
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=connector,
        )
        self._session_loop = loop
        logger.debug("New aiohttp session created")
        return self._session

    async def close(self) -> None:
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._session_loop = None

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> Any:
        try:
            return await resp.json()
        except (json.JSONDecodeError, aiohttp.ContentTypeError):
            text = await resp.text()
            return {"message": text} if text else {}

    @staticmethod
    def _raise_for_status(status: int, body: Any) -> None:
        if status < 400:
            return

        data = body if isinstance(body, dict) else {}
        message = data.get("message") or f"HTTP {status}"

        if status == 401:
            raise NotAuthenticatedError(message, status=status)
        if status in (402, 429) or data.get("upgradeRequired"):
            raise UsageLimitError(
                message,
                status=status,
                tier=data.get("tier", "free"),
                limit=data.get("limit"),
                used_today=data.get("usedToday"),
            )
        raise APIError(message, status=status)

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        timeout: int | None = None,
    ) -> Any:
        """Send one JSON request and return the decoded body."""
        url = f"{self.base_url}{path}"
        session = await self._get_session()
        kwargs: dict[str, Any] = {"headers": self._get_headers()}
        if payload is not None:
            kwargs["json"] = payload
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        logger.debug(f"{method} {url}")
        try:
            async with session.request(method, url, **kwargs) as resp:
                body = await self._read_body(resp)
                logger.debug(f"{method} {path} -> {resp.status}")
                self._raise_for_status(resp.status, body)
                return body
        except aiohttp.ClientSSLError as e:
            logger.error(f"SSL error calling {path}: {e}")
            raise ServerUnavailableError(f"SSL/TLS error: {e}") from e
        except aiohttp.ClientConnectorError as e:
            logger.error(f"Connection error calling {path}: {e}")
            raise ServerUnavailableError(f"Connection error: {e}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Request timeout calling {path}")
            raise ServerUnavailableError("Request timeout") from e
        except aiohttp.ClientError as e:
            logger.error(f"Request to {path} failed: {type(e).__name__}: {e}")
            raise ServerUnavailableError(f"Network error: {e}") from e

    # =========================================================================
    # Voice
    # =========================================================================

    async def transcribe(self, audio_base64: str) -> dict[str, Any]:
        """Transcribe base64-encoded audio. Returns {"text": ...}."""
        return await self._request(
            "POST",
            "/api/transcribe",
            {"audioBase64": audio_base64},
            timeout=self.transcription_timeout,
        )

    async def analyze_voice(
        self,
        audio_base64: str,
        duration: float,
        prompt: str,
        category: str,
    ) -> dict[str, Any]:
        """Submit a spoken answer to a practice prompt for scoring."""
        return await self._request(
            "POST",
            "/api/practice/analyze-voice",
            {
                "audioBase64": audio_base64,
                "duration": round(duration),
                "prompt": prompt,
                "category": category,
            },
            timeout=self.transcription_timeout,
        )

    # =========================================================================
    # Rehearsal
    # =========================================================================

    async def send_rehearsal_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send one rehearsal turn; payload carries phase/escalation/history."""
        return await self._request("POST", "/api/rehearsal/message", payload)

    # =========================================================================
    # Duo practice
    # =========================================================================

    async def invite_duo(self, partner_user_id: str, scenario_id: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/duo/invite",
            {"partnerUserId": partner_user_id, "scenarioId": scenario_id},
        )

    async def get_pending_duo(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/duo/pending") or []

    async def get_active_duo(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/duo/active") or []

    async def accept_duo(self, session_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/duo/{session_id}/accept")

    async def get_duo_session(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/duo/{session_id}")

    async def respond_duo(
        self, session_id: str, message: str, role: str, phase: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/duo/{session_id}/respond",
            {"message": message, "role": role, "phase": phase},
        )

    async def complete_duo(self, session_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/duo/{session_id}/complete")

    # =========================================================================
    # Progress and subscription
    # =========================================================================

    async def get_progress(self) -> dict[str, Any]:
        return await self._request("GET", "/api/progress")

    async def get_usage(self) -> dict[str, Any]:
        """Daily usage against the tier limit."""
        return await self._request("GET", "/api/subscription/usage")
