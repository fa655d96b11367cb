"""
Activity feed client for the pool indexer (GraphQL over HTTP).

Features:
- One request in flight at a time, with a minimum spacing between requests
- Exponential backoff retries on transport errors, 429 and 5xx (1s, 2s, 4s...)
- GraphQL-level errors are reported immediately, never retried
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import httpx

from pool_notes import config
from pool_notes.api.logging_config import get_logger
from pool_notes.crypto_core.derivation import normalize_pool
from pool_notes.indexer.queries import GET_ACTIVITIES_PAGE, HEALTH_CHECK
from pool_notes.indexer.schemas import ActivityPage

logger = get_logger("indexer")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class IndexerError(RuntimeError):
    """Raised when the indexer fails after all retries or returns GraphQL errors."""


class IndexerClient:
    """
    Paginated, privacy-preserving reader of the pool activity feed.

    Example:
        async with IndexerClient("http://127.0.0.1:42069/graphql") as indexer:
            page = await indexer.fetch_activity_page("0xpool", cursor=None)
    """

    def __init__(
        self,
        endpoint: str = config.INDEXER_URL,
        *,
        page_size: int = config.INDEXER_PAGE_SIZE,
        timeout: float = config.INDEXER_TIMEOUT_S,
        min_interval: float = config.INDEXER_MIN_INTERVAL_S,
        max_retries: int = config.INDEXER_MAX_RETRIES,
        backoff_base: float = 1.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            endpoint: GraphQL endpoint URL
            page_size: Records requested per page
            timeout: Per-request timeout in seconds
            min_interval: Minimum seconds between two requests
            max_retries: Attempts per request before giving up (>= 1)
            backoff_base: First retry delay; doubles on every attempt
            headers: Extra HTTP headers (e.g. an API key)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.endpoint = endpoint
        self.page_size = page_size
        self.min_interval = min_interval
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    async def __aenter__(self) -> "IndexerClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------- transport ----------
    async def _send(self, payload: Dict[str, Any]) -> httpx.Response:
        async with self._lock:
            wait = self.min_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
            try:
                return await self._client.post(self.endpoint, json=payload)
            finally:
                self._last_request = time.monotonic()

    async def _query(self, query: str, variables: Dict[str, Any], description: str) -> Dict[str, Any]:
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = await self._send({"query": query, "variables": variables})
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"{description}: connection issue ({e.__class__.__name__}), attempt {attempt + 1}/{self.max_retries}")
            else:
                if response.status_code in RETRYABLE_STATUS:
                    last_error = IndexerError(f"HTTP {response.status_code}")
                    logger.warning(f"{description}: HTTP {response.status_code}, attempt {attempt + 1}/{self.max_retries}")
                else:
                    return self._decode(response, description)

            if attempt < self.max_retries - 1:
                delay = self.backoff_base * (2 ** attempt)
                if delay > 0:
                    await asyncio.sleep(delay)

        raise IndexerError(
            f"{description} failed after {self.max_retries} attempts. Last error: {last_error}"
        )

    @staticmethod
    def _decode(response: httpx.Response, description: str) -> Dict[str, Any]:
        if response.status_code >= 400:
            raise IndexerError(f"{description} failed with HTTP {response.status_code}: {response.text[:500]}")
        try:
            body = response.json()
        except ValueError as e:
            raise IndexerError(f"{description} returned invalid JSON: {e}") from e
        errors = body.get("errors")
        if errors:
            msgs = ", ".join(str(err.get("message", err)) for err in errors)
            raise IndexerError(f"GraphQL errors: {msgs}")
        return body.get("data") or {}

    # ---------- feed ----------
    async def fetch_activity_page(self, pool: str, cursor: Optional[str] = None) -> ActivityPage:
        """
        Fetch the next page of all pool activity, oldest first.

        Args:
            pool: Pool identifier (address)
            cursor: Opaque continuation cursor from the previous page, None for the start

        Returns:
            ActivityPage with records, next_cursor and has_more

        Raises:
            IndexerError: transport failure after retries, or a malformed response
        """
        data = await self._query(
            GET_ACTIVITIES_PAGE,
            {"poolId": normalize_pool(pool), "limit": self.page_size, "after": cursor or None},
            description="Fetch activity page",
        )
        payload = data.get("activitys")
        if payload is None:
            raise IndexerError("Indexer response has no 'activitys' field")
        try:
            page = ActivityPage.from_graphql(payload)
        except ValueError as e:
            raise IndexerError(f"Malformed activity page: {e}") from e
        logger.debug(f"Fetched {len(page.records)} activities (has_more={page.has_more})")
        return page

    async def health_check(self) -> Dict[str, Any]:
        data = await self._query(HEALTH_CHECK, {}, description="Indexer health check")
        meta = data.get("_meta") or {}
        return {"status": meta.get("status")}
