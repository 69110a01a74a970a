"""Ticker → asset class classification."""

from __future__ import annotations

import re

from .models import AssetClass

# KRX listing code, bare or with its KOSPI/KOSDAQ suffix
DOMESTIC_PATTERN = re.compile(r"^\d{6}(\.(KS|KQ))?$", re.IGNORECASE)

CRYPTO_SYMBOLS: frozenset[str] = frozenset({
    "BTC", "ETH", "USDT", "USDC", "BNB", "XRP", "ADA", "SOL", "DOGE", "MATIC",
    "LTC", "BCH", "XLM", "LINK", "DOT", "AVAX", "ATOM", "UNI", "AAVE", "SUSHI",
})

ETF_SYMBOLS: frozenset[str] = frozenset({
    "VTI", "VOO", "QQQ", "AGG", "SPY", "IVV", "SCHD", "TLT", "GLD", "IAU",
    "BND", "VEA", "VWO", "VIG", "VYM", "IWM", "DIA", "XLK", "SOXX", "ARKK",
    "JEPI", "QQQM", "SPLG", "TQQQ",
})


def normalize_ticker(ticker: str) -> str:
    """Canonical cache/lookup form: stripped and uppercased."""
    return ticker.strip().upper()


def is_domestic(ticker: str) -> bool:
    return bool(DOMESTIC_PATTERN.match(normalize_ticker(ticker)))


def classify(ticker: str) -> AssetClass:
    """Map a ticker to its asset class.

    Total: anything that is not a domestic code, a known crypto symbol or a
    known ETF is an ordinary stock. Real estate is never inferred from a
    ticker; it only arrives as an explicit asset class on a holding.
    """
    symbol = normalize_ticker(ticker) if isinstance(ticker, str) else ""
    if DOMESTIC_PATTERN.match(symbol):
        return AssetClass.DOMESTIC_STOCK
    if symbol in CRYPTO_SYMBOLS:
        return AssetClass.CRYPTO
    if symbol in ETF_SYMBOLS:
        return AssetClass.ETF
    return AssetClass.STOCK
