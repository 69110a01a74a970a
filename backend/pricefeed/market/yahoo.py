"""Yahoo Finance chart API client for equity and ETF quotes."""

from __future__ import annotations

import logging
import re
import time
from urllib.parse import quote as urlquote

from .classifier import classify, normalize_ticker
from .interface import HttpQuoteProvider, usable_price
from .models import AssetClass, ErrorCode, ProviderError, Quote

logger = logging.getLogger(__name__)

PUBLIC_BASE_URL = "https://query1.finance.yahoo.com"

DEFAULT_DOMESTIC_SUFFIX = ".KS"  # KOSPI
_QUALIFIED = re.compile(r"\.(KS|KQ|T|L|HK)$", re.IGNORECASE)
_BARE_DOMESTIC = re.compile(r"^\d{6}$")

# Symbol used by the availability check (Samsung Electronics)
HEALTH_SYMBOL = "005930.KS"


def to_exchange_symbol(ticker: str) -> str:
    """Exchange-qualified Yahoo symbol for a ticker.

    - Already suffixed (.KS, .KQ, .T, .L, .HK): unchanged apart from case
    - Bare 6-digit KRX code: KOSPI suffix appended (005930 -> 005930.KS)
    - Anything else: dots become hyphens (BRK.B -> BRK-B)
    """
    symbol = normalize_ticker(ticker)
    if _QUALIFIED.search(symbol):
        return symbol
    if _BARE_DOMESTIC.match(symbol):
        return f"{symbol}{DEFAULT_DOMESTIC_SUFFIX}"
    return symbol.replace(".", "-")


class YahooFinanceProvider(HttpQuoteProvider):
    """QuoteProvider backed by GET /v8/finance/chart/{symbol}.

    The endpoint takes exactly one symbol, so fetch_many is the inherited
    concurrent fan-out; request spacing keeps the fan-out at one call per
    200ms.
    """

    name = "yahoo"
    batch_native = False
    cache_ttl = 300.0
    base_url = PUBLIC_BASE_URL
    timeout = 10.0
    min_interval = 0.2

    async def fetch_one(self, ticker: str, currency: str = "USD") -> Quote:
        symbol = to_exchange_symbol(ticker)
        payload = await self._get_json(
            f"/v8/finance/chart/{urlquote(symbol, safe='')}",
            ticker,
            params={"interval": "1d", "range": "1d", "includePrePost": "false"},
        )
        return self._parse(ticker, symbol, payload, currency)

    async def is_available(self) -> bool:
        try:
            await self._get_json(
                f"/v8/finance/chart/{HEALTH_SYMBOL}",
                HEALTH_SYMBOL,
                params={"interval": "1d", "range": "1d"},
                timeout=self.health_timeout,
            )
            return True
        except Exception as e:
            logger.warning("Yahoo Finance unavailable: %s", e)
            return False

    # --- Internal ---

    def _parse(self, ticker: str, symbol: str, payload: object, currency: str) -> Quote:
        try:
            meta = payload["chart"]["result"][0]["meta"]  # type: ignore[index]
        except (KeyError, IndexError, TypeError):
            meta = None
        if not isinstance(meta, dict):
            chart = payload.get("chart") if isinstance(payload, dict) else None
            error = chart.get("error") if isinstance(chart, dict) else None
            raise ProviderError(ErrorCode.NOT_FOUND, ticker, f"[{self.name}] no chart data for {symbol}: {error}")

        price = meta.get("regularMarketPrice")
        if not usable_price(price):
            raise ProviderError(ErrorCode.NOT_FOUND, ticker, f"[{self.name}] no valid price for {symbol}")

        previous = next(
            (p for p in (meta.get("chartPreviousClose"), meta.get("previousClose")) if usable_price(p)),
            price,
        )
        change_abs = price - previous
        change_pct = change_abs / previous * 100

        asset_class = classify(ticker)
        if not asset_class.is_equity:
            asset_class = AssetClass.STOCK
        native = meta.get("currency")

        return Quote(
            ticker=normalize_ticker(ticker),
            asset_class=asset_class,
            current_price=float(price),
            previous_price=float(previous),
            change_abs=round(change_abs, 4),
            change_pct=round(change_pct, 4),
            currency=(native if isinstance(native, str) and native else currency).upper(),
            volume=meta.get("regularMarketVolume"),
            timestamp=time.time(),
            source=self.name,
            requested_currency=currency.upper(),
        )
