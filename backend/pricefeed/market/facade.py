"""Consumer-facing price query over a holdings list."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from .classifier import normalize_ticker
from .models import AssetClass, Holding, MarketSession, Quote
from .orchestrator import PriceOrchestrator
from .session import market_session
from .tasks import RecurringTask

logger = logging.getLogger(__name__)

FRESHNESS_FLOOR = 60.0


@dataclass(frozen=True, slots=True)
class QuoteState:
    """What a consumer renders: quotes plus loading / error / staleness flags."""

    quotes: dict[str, Quote] = field(default_factory=dict)
    is_loading: bool = False
    is_refreshing: bool = False  # Background refetch while older quotes are shown
    error: str | None = None  # Only set when there is nothing to show
    is_stale: bool = False
    last_refresh_timestamp: float | None = None
    refresh_interval: float = 0.0
    is_market_open: bool = False

    def to_dict(self) -> dict:
        return {
            "quotes": {ticker: quote.to_dict() for ticker, quote in self.quotes.items()},
            "is_loading": self.is_loading,
            "is_refreshing": self.is_refreshing,
            "error": self.error,
            "is_stale": self.is_stale,
            "last_refresh_timestamp": self.last_refresh_timestamp,
            "refresh_interval": self.refresh_interval,
            "is_market_open": self.is_market_open,
        }


def priceable(holdings: Iterable[Holding]) -> dict[str, AssetClass | None]:
    """Normalized ticker -> explicit asset class (or None) for holdings that can be quoted."""
    result: dict[str, AssetClass | None] = {}
    for holding in holdings:
        ticker = normalize_ticker(holding.ticker or "")
        if not ticker or holding.asset_class is AssetClass.REAL_ESTATE:
            continue
        result.setdefault(ticker, holding.asset_class)
    return result


def ticker_key(holdings: Iterable[Holding]) -> str:
    """Order-independent identity of the quotable ticker set."""
    return ",".join(sorted(priceable(holdings)))


class PriceQueryFacade:
    """Keeps quotes for a holdings list fresh on a market-aware cadence.

    Polls the orchestrator every ``refresh_interval`` seconds (2 minutes
    while a relevant market trades, 10 otherwise) and only while active.
    Within ``freshness_floor`` seconds of the last fetch for the same ticker
    set, further requests reuse the current quotes. Quotes that fail to
    refresh stay visible and are flagged stale; ``error`` is set only when
    there is nothing to show.

    Lifecycle:
        query = PriceQueryFacade(orchestrator, holdings, "USD")
        await query.start()      # first fetch + poller
        query.state.quotes
        await query.refresh()    # drop cached quotes, fetch now
        query.pause() / await query.resume()
        await query.stop()
    """

    def __init__(
        self,
        orchestrator: PriceOrchestrator,
        holdings: Iterable[Holding] = (),
        currency: str = "USD",
        freshness_floor: float = FRESHNESS_FLOOR,
        clock: Callable[[], float] = time.time,
        session_clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._currency = currency
        self._floor = freshness_floor
        self._clock = clock
        self._session_clock = session_clock

        self._holdings: list[Holding] = []
        self._tickers: dict[str, AssetClass | None] = {}
        self._key = ""
        self._session = MarketSession(is_open_now=False, refresh_interval=0.0)

        self._quotes: dict[str, Quote] = {}
        self._is_loading = False
        self._is_refreshing = False
        self._error: str | None = None
        self._is_stale = False
        self._last_refresh: float | None = None
        self._last_fetch_at: float | None = None
        self._last_fetch_key: str | None = None
        self._version = 0

        self._active = True
        self._poller: RecurringTask | None = None
        self._inflight: asyncio.Task | None = None
        self._inflight_key: str | None = None  # Ticker set the in-flight fetch was started for
        self._refreshing: set[str] = set()

        self._apply_holdings(holdings)

    # --- Read side ---

    @property
    def state(self) -> QuoteState:
        return QuoteState(
            quotes=dict(self._quotes),
            is_loading=self._is_loading,
            is_refreshing=self._is_refreshing,
            error=self._error,
            is_stale=self._is_stale,
            last_refresh_timestamp=self._last_refresh,
            refresh_interval=self._session.refresh_interval,
            is_market_open=self._session.is_open_now,
        )

    @property
    def quotes(self) -> dict[str, Quote]:
        return dict(self._quotes)

    @property
    def ticker_key(self) -> str:
        return self._key

    @property
    def tickers(self) -> list[str]:
        return sorted(self._tickers)

    @property
    def currency(self) -> str:
        return self._currency

    @property
    def refresh_interval(self) -> float:
        return self._session.refresh_interval

    @property
    def active(self) -> bool:
        return self._active

    @property
    def version(self) -> int:
        """Bumped on every state change. Useful for SSE change detection."""
        return self._version

    # --- Lifecycle ---

    async def start(self) -> None:
        """Fetch once, then poll on the session-derived interval."""
        await self.ensure_fresh()
        if self._poller is None or not self._poller.running:
            self._poller = RecurringTask("price-query-poller", lambda: self.refresh_interval, self._poll).start()

    async def stop(self) -> None:
        """Cancel the poller. Safe to call multiple times."""
        if self._poller is not None:
            await self._poller.cancel()
            self._poller = None

    def pause(self) -> None:
        """Consumer is not visible: skip polls until resumed."""
        self._active = False
        logger.debug("Price query paused")

    async def resume(self) -> QuoteState:
        """Consumer is visible again: catch up unless quotes are still fresh."""
        self._active = True
        return await self.ensure_fresh()

    # --- Write side ---

    async def set_holdings(self, holdings: Iterable[Holding]) -> QuoteState:
        """Swap the holdings list. Fetches right away only if the ticker set changed."""
        changed = self._apply_holdings(holdings)
        if changed and self._active:
            return await self.ensure_fresh()
        return self.state

    async def ensure_fresh(self) -> QuoteState:
        """Fetch unless the same ticker set was fetched within the freshness floor."""
        if self._is_fresh():
            logger.debug("Quotes for %s still fresh, skipping fetch", self._key)
            return self.state
        return await self._fetch()

    async def refresh(self, ticker: str | None = None) -> QuoteState:
        """Drop cached quotes (all, or one ticker) and fetch immediately.

        A refresh for a ticker that is already being refreshed is a no-op.
        """
        if ticker is not None:
            key = normalize_ticker(ticker)
            if key in self._refreshing:
                return self.state
            self._refreshing.add(key)
            try:
                self._orchestrator.clear_cache(key)
                return await self._fetch(force=True)
            finally:
                self._refreshing.discard(key)

        for key in self._tickers:
            self._orchestrator.clear_cache(key)
        return await self._fetch(force=True)

    # --- Internal ---

    def _apply_holdings(self, holdings: Iterable[Holding]) -> bool:
        self._holdings = list(holdings)
        tickers = priceable(self._holdings)
        key = ",".join(sorted(tickers))
        self._tickers = tickers
        if key == self._key and self._session.refresh_interval:
            return False
        self._key = key
        self._update_session()
        # Quotes for tickers that left the set are dropped
        self._quotes = {t: q for t, q in self._quotes.items() if t in tickers}
        self._bump()
        logger.info("Price query tracking %d tickers, polling every %.0fs", len(tickers), self.refresh_interval)
        return True

    def _update_session(self) -> None:
        now = self._session_clock() if self._session_clock else None
        overrides = {t: c for t, c in self._tickers.items() if c is not None}
        self._session = market_session(self._tickers, now=now, asset_classes=overrides)

    def _is_fresh(self) -> bool:
        return (
            self._last_fetch_at is not None
            and self._last_fetch_key == self._key
            and self._clock() - self._last_fetch_at < self._floor
        )

    async def _poll(self) -> None:
        if not self._active:
            return
        self._update_session()
        await self.ensure_fresh()

    async def _fetch(self, force: bool = False) -> QuoteState:
        """Run one fetch, or join the one already in flight for the same ticker set.

        A forced fetch, or one for a ticker set that changed since the
        in-flight fetch started, waits for that fetch and then starts its own.
        """
        while self._inflight is not None and not self._inflight.done():
            joinable = not force and self._inflight_key == self._key
            await asyncio.shield(self._inflight)
            if joinable:
                return self.state
        self._inflight_key = self._key
        self._inflight = asyncio.create_task(self._do_fetch(), name="price-query-fetch")
        await asyncio.shield(self._inflight)
        return self.state

    async def _do_fetch(self) -> None:
        key = self._key
        tickers = dict(self._tickers)
        if not tickers:
            self._quotes = {}
            self._error = None
            self._is_stale = False
            self._bump()
            return

        has_data = bool(self._quotes)
        self._is_loading = not has_data
        self._is_refreshing = has_data
        self._bump()

        try:
            quotes = await self._request(tickers)
        except Exception as e:
            logger.warning("Price query fetch failed: %s", e)
            if key == self._key:
                if self._quotes:
                    self._is_stale = True
                    self._error = None
                else:
                    self._error = str(e) or e.__class__.__name__
        else:
            # A result for a ticker set that has since been replaced is dropped
            if key == self._key:
                self._merge(tickers, quotes)
            else:
                logger.debug("Ticker set changed during fetch, dropping result for %s", key)
        finally:
            self._last_fetch_at = self._clock()
            self._last_fetch_key = key
            self._is_loading = False
            self._is_refreshing = False
            self._bump()

    async def _request(self, tickers: dict[str, AssetClass | None]) -> list[Quote]:
        """One fetch_many per explicit asset class, one for the classifier-routed rest."""
        groups: dict[AssetClass | None, list[str]] = {}
        for ticker, asset_class in tickers.items():
            groups.setdefault(asset_class, []).append(ticker)
        results = await asyncio.gather(
            *(self._orchestrator.fetch_many(group, cls, self._currency) for cls, group in groups.items())
        )
        return [quote for group in results for quote in group]

    def _merge(self, tickers: dict[str, AssetClass | None], quotes: list[Quote]) -> None:
        fresh = {normalize_ticker(q.ticker): q for q in quotes}
        merged: dict[str, Quote] = {}
        stale = False
        for ticker in tickers:
            if ticker in fresh:
                merged[ticker] = fresh[ticker]
            elif ticker in self._quotes:
                merged[ticker] = self._quotes[ticker]
                stale = True

        missing = [t for t in tickers if t not in merged]
        if missing:
            logger.info("No price available for: %s", ", ".join(missing))

        self._quotes = merged
        self._is_stale = stale
        if merged:
            self._error = None
            if fresh:
                self._last_refresh = self._clock()
        else:
            self._error = f"No prices available for {', '.join(sorted(tickers))}"

    def _bump(self) -> None:
        self._version += 1
