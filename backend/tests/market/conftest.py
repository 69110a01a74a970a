"""Fixtures for price retrieval tests.

Provides a controllable clock and an in-memory QuoteProvider so the cache,
orchestrator and facade can be exercised without network access.
"""

import time

import httpx
import pytest

from pricefeed.market.classifier import classify, normalize_ticker
from pricefeed.market.interface import QuoteProvider
from pricefeed.market.models import AssetClass, ErrorCode, ProviderError, Quote


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(QuoteProvider):
    """QuoteProvider over a dict of prices that records every call.

    ``failures`` maps a ticker to the ErrorCode its fetch_one raises;
    ``batch_error`` makes the native batch call fail as a whole.
    """

    def __init__(
        self,
        name: str = "fake",
        prices: dict[str, float] | None = None,
        batch_native: bool = False,
        cache_ttl: float = 300.0,
        failures: dict[str, ErrorCode] | None = None,
        batch_error: ErrorCode | None = None,
        currency: str = "USD",
        available: bool = True,
    ) -> None:
        self.name = name
        self.prices = {normalize_ticker(k): v for k, v in (prices or {}).items()}
        self.batch_native = batch_native
        self.cache_ttl = cache_ttl
        self.failures = {normalize_ticker(k): v for k, v in (failures or {}).items()}
        self.batch_error = batch_error
        self.currency = currency
        self.available = available
        self.calls: list[str] = []
        self.batch_calls: list[list[str]] = []
        self.closed = False

    async def fetch_one(self, ticker: str, currency: str = "USD") -> Quote:
        self.calls.append(ticker)
        key = normalize_ticker(ticker)
        if key in self.failures:
            raise ProviderError(self.failures[key], ticker, "forced failure")
        if key not in self.prices:
            raise ProviderError(ErrorCode.NOT_FOUND, ticker, "unknown ticker")
        return self._quote(key, currency)

    async def fetch_many(self, tickers: list[str], currency: str = "USD") -> list[Quote]:
        if not self.batch_native:
            return await super().fetch_many(tickers, currency)
        self.batch_calls.append(list(tickers))
        if self.batch_error is not None:
            raise ProviderError(self.batch_error, tickers[0], "forced batch failure")
        return [self._quote(normalize_ticker(t), currency) for t in tickers if normalize_ticker(t) in self.prices]

    async def is_available(self) -> bool:
        return self.available

    async def aclose(self) -> None:
        self.closed = True

    @property
    def network_calls(self) -> int:
        return len(self.calls) + len(self.batch_calls)

    def _quote(self, key: str, currency: str) -> Quote:
        asset_class = classify(key)
        return Quote(
            ticker=key,
            asset_class=asset_class if asset_class is not AssetClass.REAL_ESTATE else AssetClass.STOCK,
            current_price=self.prices[key],
            currency=self.currency,
            timestamp=time.time(),
            source=self.name,
            requested_currency=currency.upper(),
        )


def json_transport(handler_map: dict, calls: list | None = None) -> httpx.MockTransport:
    """MockTransport answering by URL path.

    ``handler_map`` maps a path to a dict (JSON 200), raw bytes (200 body),
    an int (bare status code) or an exception class to raise. Every request
    is appended to ``calls``.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        answer = handler_map.get(request.url.path)
        if answer is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(answer, type) and issubclass(answer, Exception):
            raise answer("simulated failure", request=request)
        if isinstance(answer, bytes):
            return httpx.Response(200, content=answer)
        if isinstance(answer, int):
            return httpx.Response(answer, json={})
        return httpx.Response(200, json=answer)

    return httpx.MockTransport(handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_provider() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def make_transport():
    return json_transport
