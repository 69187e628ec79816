"""
Thin client for the crates.io package registry used by ``?crate`` and ``?docs``.

Calls are single-attempt with a total timeout; any transport or decoding
problem becomes :class:`ExternalServiceError` and the router posts its
generic failure reply.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Mapping, Optional

import aiohttp
from yarl import URL

from modsbot.configuration.app_configuration import RegistrySettings
from modsbot.errors import ExternalServiceError
from modsbot.util.logger import get_logger

logger = get_logger("registry_client")

# Crates shipped with the toolchain are documented on doc.rust-lang.org, not docs.rs
BUILTIN_DOCS = {
    "std": "https://doc.rust-lang.org/stable/std/",
    "core": "https://doc.rust-lang.org/stable/core/",
    "alloc": "https://doc.rust-lang.org/stable/alloc/",
    "proc_macro": "https://doc.rust-lang.org/stable/proc_macro/",
    "beta": "https://doc.rust-lang.org/beta/std/",
    "nightly": "https://doc.rust-lang.org/nightly/std/",
    "rustc": "https://doc.rust-lang.org/nightly/nightly-rustc/",
}


@dataclass(frozen=True)
class CrateSummary:
    id: str
    name: str
    version: str
    downloads: int
    description: str
    documentation: Optional[str]
    updated_at: Optional[datetime]

    @property
    def url(self) -> str:
        return f"https://crates.io/crates/{self.id}"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CrateSummary":
        updated_raw = payload.get("updated_at")
        updated_at = None
        if updated_raw:
            try:
                updated_at = datetime.fromisoformat(str(updated_raw).replace("Z", "+00:00"))
            except ValueError:
                updated_at = None
        return cls(
            id=str(payload.get("id") or payload.get("name")),
            name=str(payload.get("name") or payload.get("id")),
            version=str(payload.get("max_stable_version") or payload.get("newest_version") or "?"),
            downloads=int(payload.get("downloads") or 0),
            description=str(payload.get("description") or "").strip(),
            documentation=payload.get("documentation") or None,
            updated_at=updated_at,
        )


class RegistryClient:
    """Search crates and resolve documentation links."""

    def __init__(self, settings: RegistrySettings, session: aiohttp.ClientSession | None = None) -> None:
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

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def search(self, query: str) -> List[CrateSummary]:
        """Return crates matching ``query`` in registry ranking order."""
        query = query.strip()
        if not query:
            return []

        logger.info("[REGISTRY] Searching for crate %r", query)
        url = f"{self._settings.base_url}/crates"
        try:
            async with self._get_session().get(
                url,
                params={"q": query},
                headers={"User-Agent": self._settings.user_agent},
            ) as response:
                response.raise_for_status()
                payload = await response.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            raise ExternalServiceError(f"crate search for {query!r} failed: {exc}") from exc

        crates = payload.get("crates", []) if isinstance(payload, dict) else []
        return [CrateSummary.from_payload(item) for item in crates if isinstance(item, dict)]

    async def fetch_doc_link(self, query: str) -> Optional[str]:
        """
        Resolve ``crate`` or ``crate::item::path`` into a documentation URL.

        Returns ``None`` when no crate matches.
        """
        crate_name, _, item_path = query.strip().partition("::")
        crate_name = crate_name.strip()
        if not crate_name:
            return None

        url = BUILTIN_DOCS.get(crate_name)
        if url is None:
            results = await self.search(crate_name)
            if not results:
                return None
            best = results[0]
            url = best.documentation or f"https://docs.rs/{best.name}"

        if item_path:
            url = str(URL(url).update_query(search=item_path))
        return url
