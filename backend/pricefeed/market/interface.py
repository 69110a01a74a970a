"""Abstract interface for quote providers."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from .batch import Err, settle_all, successes
from .models import ErrorCode, ProviderError, Quote

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; pricefeed/1.0)"
DEFAULT_HEADERS = {"User-Agent": USER_AGENT, "Accept": "application/json"}


def usable_price(value: object) -> bool:
    """A finite, positive number. Booleans, NaN and infinities are rejected."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


class QuoteProvider(ABC):
    """Contract for quote sources.

    Providers answer for the tickers they are asked about and nothing else;
    caching, routing and fallback between providers live in PriceOrchestrator.

    - fetch_one raises ProviderError (never a raw transport exception).
    - fetch_many is best-effort: unresolvable tickers are left out and the
      call itself does not fail because of them.
    - is_available never raises.
    """

    name: str = "provider"
    # True when the upstream takes many symbols in one request
    batch_native: bool = False
    # Seconds a quote from this source stays in the cache
    cache_ttl: float = 300.0

    @abstractmethod
    async def fetch_one(self, ticker: str, currency: str) -> Quote:
        """Fetch a single quote. Raises ProviderError."""

    async def fetch_many(self, tickers: list[str], currency: str) -> list[Quote]:
        """Fan out one fetch_one per ticker and keep the ones that succeeded."""
        outcomes = await settle_all(tickers, lambda t: self.fetch_one(t, currency))
        for outcome in outcomes:
            if isinstance(outcome, Err):
                logger.warning("%s: dropping %s from batch: %s", self.name, outcome.key, outcome.error)
        return successes(outcomes)

    @abstractmethod
    async def is_available(self) -> bool:
        """Health check with a bounded timeout."""

    def stats(self) -> dict:
        return {"name": self.name}

    async def aclose(self) -> None:
        """Release network resources. Safe to call multiple times."""


class HttpQuoteProvider(QuoteProvider):
    """Base for providers backed by a JSON-over-HTTP endpoint.

    Adds request spacing (at most one request every ``min_interval`` seconds
    per provider instance) and translation of httpx failures into
    ProviderError codes.
    """

    base_url: str = ""
    timeout: float = 10.0
    min_interval: float = 0.2
    health_timeout: float = 5.0

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        min_interval: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        if timeout is not None:
            self.timeout = timeout
        if min_interval is not None:
            self.min_interval = min_interval
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._client = client
        self._owns_client = client is None
        self._throttle_lock = asyncio.Lock()
        self._last_request_time = 0.0  # monotonic seconds
        self._request_count = 0

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def stats(self) -> dict:
        return {
            "name": self.name,
            "request_count": self._request_count,
            "last_request_time": self._last_request_time,
        }

    # --- Internal ---

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def _throttle(self) -> None:
        """Wait until ``min_interval`` has passed since the previous request.

        Slots are reserved under a lock so concurrent callers are spaced out
        one after another instead of all waking up together.
        """
        async with self._throttle_lock:
            now = time.monotonic()
            wait = self._last_request_time + self.min_interval - now
            self._last_request_time = max(now, self._last_request_time + self.min_interval)
            self._request_count += 1
        if wait > 0:
            await asyncio.sleep(wait)

    async def _get_json(
        self,
        path: str,
        ticker: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET ``base_url + path`` and decode JSON. Raises ProviderError.

        ``base_url`` and ``headers`` override the provider defaults for one call.
        """
        await self._throttle()
        try:
            response = await self._http().get(
                f"{base_url or self.base_url}{path}",
                params=params,
                headers=headers if headers is not None else self._headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:  # ValueError: undecodable bytes or malformed JSON
            raise self._translate(e, ticker) from e

    def _translate(self, exc: Exception, ticker: str) -> ProviderError:
        """Map a transport failure onto the ProviderError taxonomy."""
        label = f"[{self.name}] {ticker}"
        if isinstance(exc, httpx.TimeoutException):
            return ProviderError(ErrorCode.TIMEOUT, ticker, f"{label} timed out after {self.timeout}s")
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            if status == 429:
                return ProviderError(ErrorCode.RATE_LIMITED, ticker, f"{label} too many requests")
            if status == 404:
                return ProviderError(ErrorCode.NOT_FOUND, ticker, f"{label} not found")
            if status in (400, 422):
                return ProviderError(ErrorCode.INVALID_TICKER, ticker, f"{label} rejected (HTTP {status})")
            return ProviderError(ErrorCode.NETWORK_ERROR, ticker, f"{label} HTTP {status}")
        if isinstance(exc, ValueError):
            return ProviderError(ErrorCode.NETWORK_ERROR, ticker, f"{label} malformed response")
        return ProviderError(ErrorCode.NETWORK_ERROR, ticker, f"{label} {exc.__class__.__name__}: {exc}")
