"""
Client for the Rust playground used by ``?play`` and ``?eval``.

Like the registry client, every call is a single attempt with a total
timeout, and failures surface as :class:`ExternalServiceError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping

import aiohttp
from yarl import URL

from modsbot.configuration.app_configuration import PlaygroundSettings
from modsbot.errors import ExternalServiceError
from modsbot.util.logger import get_logger

logger = get_logger("playground_client")

GIST_REFERER = "https://discord.gg/rust-lang"


@dataclass(frozen=True)
class PlaygroundRequest:
    code: str
    channel: str = "nightly"
    edition: str = "2024"
    mode: str = "debug"
    crate_type: str = "bin"
    tests: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "edition": self.edition,
            "code": self.code,
            "crateType": self.crate_type,
            "mode": self.mode,
            "tests": self.tests,
        }


@dataclass(frozen=True)
class PlaygroundResult:
    success: bool
    stdout: str
    stderr: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PlaygroundResult":
        return cls(
            success=bool(payload.get("success")),
            stdout=str(payload.get("stdout") or ""),
            stderr=str(payload.get("stderr") or ""),
        )


class PlaygroundClient:
    """Execute code and create shareable gists on play.rust-lang.org."""

    def __init__(self, settings: PlaygroundSettings, session: aiohttp.ClientSession | None = None) -> None:
        self._settings = settings
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self._settings.user_agent},
                timeout=aiohttp.ClientTimeout(total=self._settings.timeout_seconds),
            )
            self._owns_session = True
        return self._session

    @property
    def timeout_seconds(self) -> float:
        return self._settings.timeout_seconds

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, path: str, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None) -> Any:
        url = f"{self._settings.base_url}{path}"
        try:
            async with self._get_session().post(url, json=payload, headers=headers) as response:
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            raise ExternalServiceError(f"playground request to {path} failed: {exc}") from exc

    async def execute(self, request: PlaygroundRequest) -> PlaygroundResult:
        logger.info(
            "[PLAYGROUND] Running %s code (%s, %s, edition %s)",
            request.crate_type, request.channel, request.mode, request.edition,
        )
        payload = await self._post("/execute", request.to_payload())
        if not isinstance(payload, dict):
            raise ExternalServiceError("playground returned an unexpected execute response")
        return PlaygroundResult.from_payload(payload)

    async def create_gist(self, request: PlaygroundRequest) -> str:
        """Store ``request.code`` as a gist and return a playground link that opens it."""
        payload = await self._post("/meta/gist/", {"code": request.code}, headers={"Referer": GIST_REFERER})
        gist_id = payload.get("id") if isinstance(payload, dict) else None
        if not gist_id:
            raise ExternalServiceError("playground returned no gist id")
        logger.info("[PLAYGROUND] Created gist %s", gist_id)
        return str(URL(f"{self._settings.base_url}/").with_query(
            version=request.channel,
            mode=request.mode,
            edition=request.edition,
            gist=str(gist_id),
        ))
