"""Price orchestrator: routing, caching and provider fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Iterable

from .batch import Ok, Outcome, settle_all
from .cache import QuoteCache
from .classifier import classify, normalize_ticker
from .coingecko import CoinGeckoProvider
from .interface import QuoteProvider
from .models import (
    AssetClass,
    ErrorCode,
    ErrorLogEntry,
    PriceUnavailableError,
    ProviderError,
    Quote,
)
from .offline_prices import OfflinePriceProvider
from .yahoo import YahooFinanceProvider

logger = logging.getLogger(__name__)

Registry = dict[AssetClass, list[QuoteProvider]]

ERROR_LOG_SIZE = 100
RATE_LIMIT_BACKOFF = 1.0


def default_registry(
    crypto: QuoteProvider | None = None,
    equity: QuoteProvider | None = None,
    offline: QuoteProvider | None = None,
) -> Registry:
    """Fallback chains per asset class, tried in list order.

    crypto        -> [crypto]
    stock/etf     -> [equity, offline]
    real estate   -> []  (never quoted)
    """
    equity_chain = [p for p in (equity, offline) if p is not None]
    return {
        AssetClass.CRYPTO: [crypto] if crypto is not None else [],
        AssetClass.DOMESTIC_STOCK: list(equity_chain),
        AssetClass.STOCK: list(equity_chain),
        AssetClass.ETF: list(equity_chain),
        AssetClass.REAL_ESTATE: [],
    }


class PriceOrchestrator:
    """Entry point for quotes: classify, check the cache, walk the chain.

    Each asset class maps to an ordered list of providers. A ticker is
    offered to each provider in turn until one prices it; the quote is then
    written through to the cache with that provider's TTL. Failures along the
    way are kept in a bounded error log.

    Lifecycle:
        orchestrator = PriceOrchestrator()
        await orchestrator.start()     # starts the cache sweeper
        quotes = await orchestrator.fetch_many(["BTC", "ETH"], AssetClass.CRYPTO, "usd")
        await orchestrator.close()     # stops the sweeper, closes HTTP clients
    """

    def __init__(
        self,
        cache: QuoteCache | None = None,
        registry: Registry | None = None,
        rate_limit_backoff: float = RATE_LIMIT_BACKOFF,
        error_log_size: int = ERROR_LOG_SIZE,
    ) -> None:
        self._cache = cache if cache is not None else QuoteCache()
        if registry is None:
            registry = default_registry(CoinGeckoProvider(), YahooFinanceProvider(), OfflinePriceProvider())
        self._registry = registry
        self._backoff = rate_limit_backoff
        self._errors: deque[ErrorLogEntry] = deque(maxlen=error_log_size)

    @property
    def cache(self) -> QuoteCache:
        return self._cache

    def chain(self, asset_class: AssetClass) -> list[QuoteProvider]:
        return list(self._registry.get(asset_class, []))

    def providers(self) -> list[QuoteProvider]:
        """Every distinct provider in the registry, in first-seen order."""
        seen: list[QuoteProvider] = []
        for chain in self._registry.values():
            for provider in chain:
                if not any(provider is p for p in seen):
                    seen.append(provider)
        return seen

    # --- Lifecycle ---

    async def start(self) -> None:
        self._cache.start_sweeper()
        logger.info(
            "Price orchestrator started: %s",
            ", ".join(f"{cls.value}=[{','.join(p.name for p in chain)}]" for cls, chain in self._registry.items()),
        )

    async def close(self) -> None:
        """Stop the sweeper and release provider clients. Safe to call multiple times."""
        await self._cache.stop_sweeper()
        for provider in self.providers():
            await provider.aclose()
        logger.info("Price orchestrator stopped")

    async def __aenter__(self) -> PriceOrchestrator:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Quotes ---

    async def fetch_one(
        self,
        ticker: str,
        currency: str = "USD",
        asset_class: AssetClass | None = None,
    ) -> Quote:
        """Quote for one ticker.

        Raises PriceUnavailableError with INVALID_ASSET_CLASS for real estate
        (no provider is consulted) or UNSUPPORTED once every provider in the
        chain has failed.
        """
        asset_class = asset_class or classify(ticker)
        if asset_class is AssetClass.REAL_ESTATE:
            raise PriceUnavailableError(
                ErrorCode.INVALID_ASSET_CLASS, ticker, "real estate prices must be entered manually"
            )

        cached = self._cached(ticker, currency)
        if cached is not None:
            logger.debug("Cache hit for %s", ticker)
            return cached

        last_error: ProviderError | None = None
        for provider in self.chain(asset_class):
            try:
                quote = await self._call(provider, ticker, currency)
            except Exception as e:
                error = _as_provider_error(e, ticker)
                self._record(error, provider)
                last_error = error
                logger.warning("%s failed for %s: %s", provider.name, ticker, error)
                continue
            self._store(ticker, quote, provider)
            return quote

        raise PriceUnavailableError(
            ErrorCode.UNSUPPORTED, ticker, "price not found, enter it manually or check the ticker"
        ) from last_error

    async def fetch_many(
        self,
        tickers: Iterable[str],
        asset_class: AssetClass | None = None,
        currency: str = "USD",
    ) -> list[Quote]:
        """Quotes for many tickers. Never raises for per-ticker failures.

        Tickers no source can price are left out of the result; callers
        detect gaps by comparing against what they asked for. With
        ``asset_class=None`` each ticker is classified and the groups are
        fetched concurrently.
        """
        tickers = _dedupe(tickers)
        if not tickers:
            return []

        if asset_class is None:
            groups: dict[AssetClass, list[str]] = {}
            for ticker in tickers:
                groups.setdefault(classify(ticker), []).append(ticker)
            results = await asyncio.gather(
                *(self.fetch_many(group, cls, currency) for cls, group in groups.items())
            )
            return [quote for group in results for quote in group]

        if asset_class is AssetClass.REAL_ESTATE:
            logger.debug("Skipping %d real estate tickers", len(tickers))
            return []

        cached: list[Quote] = []
        pending: list[str] = []
        for ticker in tickers:
            quote = self._cached(ticker, currency)
            if quote is not None:
                cached.append(quote)
            else:
                pending.append(ticker)

        fetched: list[Quote] = []
        for provider in self.chain(asset_class):
            if not pending:
                break
            quotes = await self._fetch_batch(provider, pending, currency)
            for quote in quotes:
                self._store(quote.ticker, quote, provider)
            fetched.extend(quotes)
            priced = {normalize_ticker(q.ticker) for q in quotes}
            pending = [t for t in pending if normalize_ticker(t) not in priced]

        if pending:
            logger.info("No %s price for: %s", asset_class.value, ", ".join(pending))
        logger.debug(
            "fetch_many %s: %d cached, %d fetched, %d missing",
            asset_class.value,
            len(cached),
            len(fetched),
            len(pending),
        )
        return cached + fetched

    # --- Diagnostics ---

    def clear_cache(self, ticker: str | None = None) -> None:
        if ticker:
            self._cache.remove(ticker)
        else:
            self._cache.clear()

    def cache_age(self, ticker: str) -> float | None:
        return self._cache.get_age(ticker)

    def cache_stats(self) -> dict:
        return self._cache.stats()

    def error_log(self, limit: int = 50) -> list[ErrorLogEntry]:
        """Most recent provider failures, oldest first."""
        entries = list(self._errors)
        return entries[-limit:] if limit > 0 else []

    def clear_error_log(self) -> None:
        self._errors.clear()

    async def provider_status(self) -> dict[str, bool]:
        """Check every provider concurrently."""
        outcomes = await settle_all(self.providers(), lambda p: p.is_available())
        return {o.key.name: bool(o.value) if isinstance(o, Ok) else False for o in outcomes}

    # --- Internal ---

    def _cached(self, ticker: str, currency: str) -> Quote | None:
        quote = self._cache.get(ticker)
        if quote is not None and quote.matches_currency(currency):
            return quote
        return None

    def _store(self, ticker: str, quote: Quote, provider: QuoteProvider) -> None:
        self._cache.set(ticker, quote, ttl=provider.cache_ttl)

    async def _call(self, provider: QuoteProvider, ticker: str, currency: str) -> Quote:
        """One fetch_one, retried once after a backoff if the provider is rate limiting."""
        try:
            return await provider.fetch_one(ticker, currency)
        except ProviderError as e:
            if not e.retryable or self._backoff <= 0:
                raise
            self._record(e, provider)
            logger.warning("%s rate limited on %s, retrying in %.1fs", provider.name, ticker, self._backoff)
        await asyncio.sleep(self._backoff)
        return await provider.fetch_one(ticker, currency)

    async def _fetch_batch(self, provider: QuoteProvider, tickers: list[str], currency: str) -> list[Quote]:
        if provider.batch_native:
            try:
                return await provider.fetch_many(tickers, currency)
            except Exception as e:
                error = _as_provider_error(e, tickers[0])
                self._record(error, provider)
                logger.warning("%s batch failed (%s), falling back to single calls", provider.name, error)

        outcomes = await settle_all(tickers, lambda t: self._call(provider, t, currency))
        return self._collect(outcomes, provider)

    def _collect(self, outcomes: list[Outcome], provider: QuoteProvider) -> list[Quote]:
        quotes: list[Quote] = []
        for outcome in outcomes:
            if isinstance(outcome, Ok):
                quotes.append(outcome.value)
                continue
            error = _as_provider_error(outcome.error, outcome.key)
            self._record(error, provider)
            logger.warning("%s failed for %s: %s", provider.name, outcome.key, error)
        return quotes

    def _record(self, error: ProviderError, provider: QuoteProvider) -> None:
        self._errors.append(
            ErrorLogEntry(
                code=error.code,
                message=str(error),
                ticker=error.ticker,
                timestamp=error.timestamp or time.time(),
                source=provider.name,
            )
        )


def _as_provider_error(error: Exception, ticker: str) -> ProviderError:
    """Anything a provider lets escape is treated as a network failure."""
    if isinstance(error, ProviderError):
        return error
    return ProviderError(ErrorCode.NETWORK_ERROR, ticker, f"{error.__class__.__name__}: {error}")


def _dedupe(tickers: Iterable[str]) -> list[str]:
    """Drop blanks and repeats (by normalized form), keeping first occurrence."""
    seen: set[str] = set()
    result: list[str] = []
    for ticker in tickers:
        key = normalize_ticker(ticker)
        if key and key not in seen:
            seen.add(key)
            result.append(ticker)
    return result
