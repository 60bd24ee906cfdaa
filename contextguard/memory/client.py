"""Client for the long-term memory service."""

from typing import Any

import httpx
from loguru import logger

from contextguard.memory.types import MemoryConfig


class MemoryClient:
    """
    Async client for the memory service HTTP API.

    Every method degrades to an empty result on failure; memory is an
    enrichment and must never break the caller.
    """

    def __init__(self, config: MemoryConfig, transport: httpx.AsyncBaseTransport | None = None):
        """
        Initialize memory client.

        Args:
            config: Memory service configuration.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key
        return headers

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any] | None:
        """POST JSON and return the decoded body, or None on any failure."""
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.config.request_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    headers=self._headers(),
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
                return data if isinstance(data, dict) else {}
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Memory service {path} failed: {e}")
            return None

    async def query(
        self,
        query: str,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[dict[str, Any]]:
        """
        Find memories relevant to a query.

        Args:
            query: Free-text query (truncated to 1000 chars).
            limit: Maximum results.
            min_similarity: Similarity cutoff.

        Returns:
            List of memory dicts (id, content, similarity, created_at, tags).
        """
        data = await self._post(
            "/memory/query",
            {
                "query": query[:1000],
                "limit": limit or self.config.query_limit,
                "min_similarity": (
                    self.config.min_similarity if min_similarity is None else min_similarity
                ),
            },
        )
        if not data:
            return []
        results = data.get("results") or []
        return [r for r in results if isinstance(r, dict)]

    async def store(self, payload: dict[str, Any]) -> bool:
        """Store one memory record. Returns True on success."""
        return await self._post("/memory/store", payload) is not None

    async def store_summary(self, agent_id: str, summary: str) -> bool:
        """Store a compaction summary so other agents can find it."""
        return await self.store({
            "agent_id": agent_id,
            "content": f"[COMPACTION SUMMARY] {summary}",
            "tags": ["compaction", "auto"],
            "importance": 0.6,
        })

    async def extract(
        self,
        conversation: str,
        agent_id: str,
        tags: list[str] | None = None,
    ) -> str | None:
        """
        Ask the service to extract and store memories from a transcript.

        Returns:
            The stored memory id, or None if nothing was stored.
        """
        data = await self._post(
            "/extract",
            {"conversation": conversation, "agent_id": agent_id, "tags": tags or ["continuous"]},
            timeout=self.config.extract_timeout_seconds,
        )
        if not data or not data.get("stored"):
            return None
        return str(data.get("memory_id") or "")
