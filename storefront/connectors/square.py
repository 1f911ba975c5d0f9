"""Square connector — catalog search and inventory counts under a rate-limit budget.

Every outbound request passes through a shared sliding-window RateLimiter
(queued behind an asyncio.Lock, never fired concurrently when the window
is full) and is wrapped in with_retry. 429, 5xx and transport errors are
transient and retried; other 4xx responses are permanent.

Called by: services/catalog_service.py
Depends on: storefront.http_client, storefront.retry
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable

import httpx
from loguru import logger

from ..http_client import http
from ..retry import with_retry
from ..utils import safe_int

SEARCH_ITEMS_PATH = "/v2/catalog/search-catalog-items"
BATCH_COUNTS_PATH = "/v2/inventory/counts/batch-retrieve"
INVENTORY_BATCH_SIZE = 100

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class PlatformError(Exception):
    """The platform rejected a request or returned an unusable response."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransientPlatformError(PlatformError):
    """Network failure, 5xx or rate-limit rejection; safe to retry."""


class PlatformNotConfiguredError(PlatformError):
    pass


class RateLimiter:
    """Sliding-window limiter: at most max_requests per window_seconds.

    Callers that arrive with the window full wait (in arrival order) until
    the oldest request ages out.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window_seconds:
            self._requests.popleft()

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._requests)

    async def acquire(self, context: str = "") -> float:
        """Reserve a slot, sleeping if needed. Returns the seconds waited."""
        async with self._lock:
            waited = 0.0
            now = self._clock()
            self._prune(now)
            if len(self._requests) >= self.max_requests:
                wait = self.window_seconds - (now - self._requests[0])
                logger.info("Rate limit reached, waiting {:.1f}s for {}", wait, context or "platform call")
                await asyncio.sleep(wait)
                waited = wait
                now = self._clock()
                self._prune(now)
            self._requests.append(now)
            return waited


class SquareConnector:
    """Square Catalog + Inventory REST API, scoped to one location."""

    def __init__(
        self,
        access_token: str,
        location_id: str,
        base_url: str = "https://connect.squareupsandbox.com",
        api_version: str = "2024-07-17",
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        rate_limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.access_token = access_token
        self.location_id = location_id
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.rate_limiter = rate_limiter or RateLimiter()
        self._client = client

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": self.api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _post(self, path: str, payload: dict, context: str) -> dict:
        client = self._client or http
        await self.rate_limiter.acquire(context)
        try:
            r = await client.post(
                self.base_url + path,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            raise TransientPlatformError(f"{context}: {type(e).__name__}: {e}") from e

        if r.status_code in RETRYABLE_STATUSES:
            raise TransientPlatformError(
                f"{context}: HTTP {r.status_code} {r.text[:200]}", status_code=r.status_code
            )
        if r.status_code >= 400:
            raise PlatformError(
                f"{context}: HTTP {r.status_code} {r.text[:200]}", status_code=r.status_code
            )
        try:
            data = r.json()
        except ValueError as e:
            raise PlatformError(f"{context}: response is not JSON", status_code=r.status_code) from e

        errors = data.get("errors") or []
        if errors:
            detail = errors[0].get("detail") or errors[0].get("code") or "unknown error"
            raise PlatformError(f"{context}: {detail}", status_code=r.status_code)
        return data

    async def _call(self, path: str, payload: dict, context: str) -> dict:
        return await with_retry(
            lambda: self._post(path, payload, context),
            context,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            retry_on=(TransientPlatformError,),
        )

    def _require_config(self) -> None:
        if not self.access_token:
            raise PlatformNotConfiguredError("SQUARE_ACCESS_TOKEN not set")
        if not self.location_id:
            raise PlatformNotConfiguredError("SQUARE_LOCATION_ID not set")

    async def search_catalog_items(self) -> list[dict]:
        """Every catalog ITEM enabled at the location, following cursors."""
        self._require_config()
        items: list[dict] = []
        cursor = None
        while True:
            payload: dict = {"enabled_location_ids": [self.location_id]}
            if cursor:
                payload["cursor"] = cursor
            data = await self._call(
                SEARCH_ITEMS_PATH, payload, f"catalog search (cursor: {cursor or 'initial'})"
            )
            items.extend(data.get("items") or [])
            cursor = data.get("cursor")
            if not cursor:
                break

        logger.info("Square: retrieved {} catalog items for {}", len(items), self.location_id)
        return items

    async def batch_inventory_counts(self, variation_ids: list[str]) -> dict[str, int]:
        """IN_STOCK quantity per variation id at the location.

        Variations with no count record at the location are absent from
        the result; callers treat absence as "not stocked here".
        """
        self._require_config()
        counts: dict[str, int] = {}
        for start in range(0, len(variation_ids), INVENTORY_BATCH_SIZE):
            batch = variation_ids[start:start + INVENTORY_BATCH_SIZE]
            cursor = None
            while True:
                payload: dict = {"catalog_object_ids": batch, "location_ids": [self.location_id]}
                if cursor:
                    payload["cursor"] = cursor
                data = await self._call(
                    BATCH_COUNTS_PATH, payload, f"inventory counts ({len(batch)} ids)"
                )
                for count in data.get("counts") or []:
                    object_id = count.get("catalog_object_id")
                    if not object_id:
                        continue
                    counts.setdefault(object_id, 0)
                    if count.get("state", "IN_STOCK") == "IN_STOCK":
                        counts[object_id] += max(0, safe_int(_whole(count.get("quantity"))) or 0)
                cursor = data.get("cursor")
                if not cursor:
                    break
        return counts

    async def fetch_inventory_count(self, variation_id: str) -> int | None:
        """Quantity for one variation, or None if it has no record at the location."""
        counts = await self.batch_inventory_counts([variation_id])
        return counts.get(variation_id)


def _whole(quantity) -> str | None:
    """Square sends quantities as decimal strings ("5" or "5.0")."""
    if quantity is None:
        return None
    return str(quantity).split(".", 1)[0]
