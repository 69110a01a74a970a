"""CoinGecko API client for cryptocurrency quotes."""

from __future__ import annotations

import logging
import math
import time
from typing import Any

from .classifier import normalize_ticker
from .interface import DEFAULT_HEADERS, HttpQuoteProvider, usable_price
from .models import AssetClass, ErrorCode, ProviderError, Quote

logger = logging.getLogger(__name__)

PUBLIC_BASE_URL = "https://api.coingecko.com/api/v3"
# Keyless secondary source for single-coin lookups
PAPRIKA_BASE_URL = "https://api.coinpaprika.com/v1"

# Ticker symbol -> CoinGecko coin id
COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "USDC": "usd-coin",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "SOL": "solana",
    "DOGE": "dogecoin",
    "MATIC": "matic-network",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "XLM": "stellar",
    "LINK": "chainlink",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "ATOM": "cosmos",
    "UNI": "uniswap",
    "AAVE": "aave",
    "SUSHI": "sushi",
}


# Ticker symbol -> Coinpaprika coin id
PAPRIKA_IDS: dict[str, str] = {
    "BTC": "btc-bitcoin",
    "ETH": "eth-ethereum",
    "SOL": "sol-solana",
    "XRP": "xrp-xrp",
    "ADA": "ada-cardano",
    "DOGE": "doge-dogecoin",
    "DOT": "dot-polkadot",
    "AVAX": "avax-avalanche",
    "LINK": "link-chainlink",
    "MATIC": "matic-polygon",
    "LTC": "ltc-litecoin",
    "UNI": "uni-uniswap",
}


def coin_id(ticker: str) -> str:
    """CoinGecko id for a symbol. Unknown symbols are tried as their lowercased self."""
    return COINGECKO_IDS.get(normalize_ticker(ticker), ticker.strip().lower())


def paprika_id(ticker: str) -> str:
    """Coinpaprika id for a symbol. Unknown symbols are tried as ``sym-sym``."""
    symbol = ticker.strip().lower()
    return PAPRIKA_IDS.get(normalize_ticker(ticker), f"{symbol}-{symbol}")


class CoinGeckoProvider(HttpQuoteProvider):
    """QuoteProvider backed by GET /simple/price.

    One request carries every requested id, so fetch_many costs a single
    call however many tickers are asked for.

    Rate limits:
      - Public API: roughly 10-50 req/min; requests are spaced 100ms apart
      - Demo key (COINGECKO_API_KEY): sent as x-cg-demo-api-key
    """

    name = "coingecko"
    batch_native = True
    cache_ttl = 300.0
    base_url = PUBLIC_BASE_URL
    timeout = 15.0
    min_interval = 0.1

    def __init__(self, api_key: str = "", fallback_url: str | None = PAPRIKA_BASE_URL, **kwargs: Any) -> None:
        headers = {"x-cg-demo-api-key": api_key} if api_key else None
        super().__init__(headers=headers, **kwargs)
        self._api_key = api_key
        self._fallback_url = fallback_url.rstrip("/") if fallback_url else None

    async def fetch_one(self, ticker: str, currency: str = "usd") -> Quote:
        """Single-coin quote from CoinGecko, then from Coinpaprika if that fails.

        When both fail, the CoinGecko error is the one raised.
        """
        try:
            return await self._fetch_simple(ticker, currency)
        except ProviderError as e:
            if not self._fallback_url:
                raise
            logger.warning("CoinGecko failed for %s (%s), trying Coinpaprika", ticker, e.code.value)
            try:
                return await self._fetch_paprika(ticker, currency)
            except ProviderError as fallback_error:
                logger.warning("Coinpaprika fallback failed for %s: %s", ticker, fallback_error)
            raise

    async def fetch_many(self, tickers: list[str], currency: str = "usd") -> list[Quote]:
        """All tickers in one request. Ids missing from the response are dropped.

        Raises ProviderError only when the request itself fails.
        """
        if not tickers:
            return []
        ids = {ticker: coin_id(ticker) for ticker in tickers}
        payload = await self._get_json(
            "/simple/price",
            tickers[0],
            params=self._params(sorted(set(ids.values())), currency),
        )
        if not isinstance(payload, dict):
            payload = {}

        quotes: list[Quote] = []
        for ticker, cid in ids.items():
            quote = self._parse(ticker, payload.get(cid), currency)
            if quote is None:
                logger.warning("CoinGecko: no data for %s (id %s)", ticker, cid)
                continue
            quotes.append(quote)
        logger.debug("CoinGecko batch: %d/%d tickers priced", len(quotes), len(tickers))
        return quotes

    async def is_available(self) -> bool:
        try:
            await self._get_json("/ping", "ping", timeout=self.health_timeout)
            return True
        except Exception as e:
            logger.warning("CoinGecko unavailable: %s", e)
            return False

    # --- Internal ---

    async def _fetch_simple(self, ticker: str, currency: str) -> Quote:
        cid = coin_id(ticker)
        payload = await self._get_json("/simple/price", ticker, params=self._params([cid], currency))
        quote = self._parse(ticker, payload.get(cid) if isinstance(payload, dict) else None, currency)
        if quote is None:
            raise ProviderError(ErrorCode.NOT_FOUND, ticker, f"[{self.name}] no {currency.lower()} price for {cid}")
        return quote

    async def _fetch_paprika(self, ticker: str, currency: str) -> Quote:
        """GET /tickers/{id} on Coinpaprika. The demo key is not sent there."""
        pid = paprika_id(ticker)
        cur = currency.upper()
        payload = await self._get_json(
            f"/tickers/{pid}",
            ticker,
            params={"quotes": cur},
            base_url=self._fallback_url,
            headers=DEFAULT_HEADERS,
        )
        quotes = payload.get("quotes") if isinstance(payload, dict) else None
        data = quotes.get(cur) if isinstance(quotes, dict) else None
        price = data.get("price") if isinstance(data, dict) else None
        if not usable_price(price):
            raise ProviderError(ErrorCode.NOT_FOUND, ticker, f"[coinpaprika] no {cur} price for {pid}")

        change_pct = _finite(data.get("percent_change_24h"))
        previous, change_abs = _previous(price, change_pct)
        return Quote(
            ticker=normalize_ticker(ticker),
            asset_class=AssetClass.CRYPTO,
            current_price=float(price),
            previous_price=previous,
            change_abs=change_abs,
            change_pct=change_pct,
            currency=cur,
            market_cap=_finite(data.get("market_cap")),
            volume=_finite(data.get("volume_24h")),
            timestamp=time.time(),
            source="coinpaprika",
            requested_currency=cur,
        )

    @staticmethod
    def _params(ids: list[str], currency: str) -> dict[str, str]:
        return {
            "ids": ",".join(ids),
            "vs_currencies": currency.lower(),
            "include_market_cap": "true",
            "include_24hr_vol": "true",
            "include_24hr_change": "true",
        }

    def _parse(self, ticker: str, data: dict | None, currency: str) -> Quote | None:
        """Build a Quote from one id's entry, or None if it has no usable price."""
        cur = currency.lower()
        if not isinstance(data, dict):
            return None
        price = data.get(cur)
        if not usable_price(price):
            return None
        change_pct = _finite(data.get(f"{cur}_24h_change"))
        previous, change_abs = _previous(price, change_pct)
        return Quote(
            ticker=normalize_ticker(ticker),
            asset_class=AssetClass.CRYPTO,
            current_price=float(price),
            previous_price=previous,
            change_abs=change_abs,
            change_pct=change_pct,
            currency=currency.upper(),
            market_cap=_finite(data.get(f"{cur}_market_cap")),
            volume=_finite(data.get(f"{cur}_24h_vol")),
            timestamp=time.time(),
            source=self.name,
            requested_currency=currency.upper(),
        )


def _finite(value: object) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return None


def _previous(price: float, change_pct: float | None) -> tuple[float | None, float | None]:
    """Price 24h ago and the absolute change, derived from the 24h percent change."""
    if change_pct is None or change_pct <= -100:
        return None, None
    previous = price / (1 + change_pct / 100)
    return previous, price - previous
