"""Static last-known prices used when the equity API cannot answer."""

from __future__ import annotations

import logging
import time

from .classifier import classify, is_domestic, normalize_ticker
from .interface import QuoteProvider
from .models import AssetClass, ErrorCode, ProviderError, Quote

logger = logging.getLogger(__name__)

# Last-known prices (as of project creation). No freshness metadata.
OFFLINE_PRICES: dict[str, float] = {
    # Tech
    "AAPL": 182.50,
    "MSFT": 378.90,
    "GOOGL": 142.30,
    "NVDA": 875.40,
    "TSLA": 245.60,
    "META": 501.20,
    "AMZN": 178.90,
    # Finance
    "JPM": 197.30,
    "BAC": 39.20,
    "WFC": 54.80,
    "GS": 411.20,
    "BRK-B": 418.50,
    "BRK.B": 418.50,
    # ETFs
    "VTI": 232.40,
    "VOO": 458.90,
    "QQQ": 376.20,
    "AGG": 98.50,
    # KRX (KRW)
    "005930": 71000.0,  # Samsung Electronics
    "000660": 178000.0,  # SK hynix
    "035420": 185000.0,  # NAVER
}

DOMESTIC_CURRENCY = "KRW"
FOREIGN_CURRENCY = "USD"


def offline_price(ticker: str, prices: dict[str, float] = OFFLINE_PRICES) -> float | None:
    """Last-known price for a ticker, accepting suffixed KRX codes (005930.KS)."""
    symbol = normalize_ticker(ticker)
    if symbol in prices:
        return prices[symbol]
    if is_domestic(symbol):
        return prices.get(symbol.split(".")[0])
    return None


class OfflinePriceProvider(QuoteProvider):
    """QuoteProvider over a fixed price table. Never touches the network.

    Lower-confidence data, so its quotes are cached for an hour rather than
    five minutes: the network call it stands in for is expected to keep
    failing for a while.
    """

    name = "offline"
    batch_native = False
    cache_ttl = 3600.0

    def __init__(self, prices: dict[str, float] | None = None) -> None:
        self._prices = OFFLINE_PRICES if prices is None else {normalize_ticker(k): v for k, v in prices.items()}
        self._request_count = 0

    async def fetch_one(self, ticker: str, currency: str = "USD") -> Quote:
        self._request_count += 1
        price = self._lookup(ticker)
        if price is None or price <= 0:
            raise ProviderError(ErrorCode.NOT_FOUND, ticker, f"[{self.name}] {ticker} not in offline table")
        asset_class = classify(ticker)
        if not asset_class.is_equity:
            asset_class = AssetClass.STOCK
        return Quote(
            ticker=normalize_ticker(ticker),
            asset_class=asset_class,
            current_price=price,
            currency=DOMESTIC_CURRENCY if is_domestic(ticker) else FOREIGN_CURRENCY,
            timestamp=time.time(),
            source=self.name,
            requested_currency=currency.upper(),
        )

    async def is_available(self) -> bool:
        return bool(self._prices)

    def stats(self) -> dict:
        return {"name": self.name, "request_count": self._request_count, "size": len(self._prices)}

    def _lookup(self, ticker: str) -> float | None:
        return offline_price(ticker, self._prices)
