"""Thread-safe in-memory quote cache with per-entry TTL."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from threading import Lock

from .classifier import normalize_ticker
from .models import Quote
from .tasks import RecurringTask

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
SWEEP_INTERVAL = 60.0


@dataclass(frozen=True, slots=True)
class CacheEntry:
    quote: Quote
    stored_at: float
    expires_at: float


class QuoteCache:
    """Expiring ticker → Quote store.

    Expired entries are never returned: a read that finds one deletes it and
    reports a miss, and the sweeper removes the rest every ``sweep_interval``
    seconds. Every read and write happens under one lock, so concurrent
    fetches writing back on completion never interleave with an expiry check.

    Writers: PriceOrchestrator (write-through after each successful fetch).
    Readers: PriceOrchestrator, PriceQueryFacade (via the orchestrator).
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        sweep_interval: float = SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._default_ttl = default_ttl
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweeper: RecurringTask | None = None

    def get(self, ticker: str) -> Quote | None:
        """Live quote for ``ticker``, or None on a miss (expired entries are purged)."""
        key = normalize_ticker(ticker)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.quote

    def set(self, ticker: str, quote: Quote, ttl: float | None = None) -> None:
        """Store ``quote``, replacing any previous entry. Last writer wins."""
        key = normalize_ticker(ticker)
        now = self._clock()
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = CacheEntry(quote=quote, stored_at=now, expires_at=now + ttl)

    def has(self, ticker: str) -> bool:
        return self.get(ticker) is not None

    def get_many(self, tickers: Iterable[str]) -> dict[str, Quote]:
        """Live quotes for the given tickers, keyed as passed in. Misses are left out."""
        result: dict[str, Quote] = {}
        for ticker in tickers:
            quote = self.get(ticker)
            if quote is not None:
                result[ticker] = quote
        return result

    def remove(self, ticker: str) -> None:
        with self._lock:
            self._entries.pop(normalize_ticker(ticker), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_age(self, ticker: str) -> float | None:
        """Seconds since the entry was stored, or None if absent or expired."""
        key = normalize_ticker(ticker)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if now > entry.expires_at:
                del self._entries[key]
                return None
            return round(now - entry.stored_at, 3)

    def sweep(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired quotes", len(expired))
        return len(expired)

    def stats(self) -> dict:
        """Size plus seconds-until-expiry for each stored entry."""
        with self._lock:
            now = self._clock()
            return {
                "size": len(self._entries),
                "entries": [
                    {"ticker": key, "expires_in": round(entry.expires_at - now)}
                    for key, entry in self._entries.items()
                ],
            }

    # --- Sweeper lifecycle ---

    def start_sweeper(self) -> RecurringTask:
        """Start the periodic sweep. The returned handle must be cancelled on teardown."""
        if self._sweeper is None or not self._sweeper.running:
            self._sweeper = RecurringTask("quote-cache-sweep", self._sweep_interval, self.sweep).start()
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            await self._sweeper.cancel()
            self._sweeper = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, ticker: str) -> bool:
        return self.has(ticker)
