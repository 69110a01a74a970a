"""Data models for price retrieval."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class AssetClass(str, Enum):
    """Closed set of asset classes. Decides the provider chain for a ticker."""

    DOMESTIC_STOCK = "domestic_stock"  # KRX listings: 005930, 005930.KS, 035720.KQ
    STOCK = "stock"
    ETF = "etf"
    CRYPTO = "crypto"
    REAL_ESTATE = "real_estate"

    @property
    def is_equity(self) -> bool:
        return self in (AssetClass.DOMESTIC_STOCK, AssetClass.STOCK, AssetClass.ETF)


class ErrorCode(str, Enum):
    # Recoverable: raised by providers, retried on the next cycle
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    INVALID_TICKER = "invalid_ticker"
    NETWORK_ERROR = "network_error"
    # Terminal: raised by the orchestrator once nothing else can be tried
    UNSUPPORTED = "unsupported"
    INVALID_ASSET_CLASS = "invalid_asset_class"


@dataclass(frozen=True, slots=True)
class Quote:
    """Immutable price observation for one ticker.

    A refetch produces a new Quote that replaces the cached one; quotes are
    never updated in place.
    """

    ticker: str
    asset_class: AssetClass
    current_price: float
    currency: str
    source: str
    previous_price: float | None = None
    change_abs: float | None = None
    change_pct: float | None = None
    market_cap: float | None = None
    volume: float | None = None
    timestamp: float = field(default_factory=time.time)  # Unix seconds
    requested_currency: str | None = None  # Display currency the caller asked for

    def __post_init__(self) -> None:
        if not self.current_price > 0:
            raise ValueError(f"Quote for {self.ticker} needs a positive price, got {self.current_price!r}")

    def matches_currency(self, currency: str) -> bool:
        """True if this quote was fetched for ``currency`` (case-insensitive)."""
        wanted = currency.upper()
        return (self.requested_currency or self.currency).upper() == wanted

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "ticker": self.ticker,
            "asset_class": self.asset_class.value,
            "current_price": self.current_price,
            "previous_price": self.previous_price,
            "change_abs": self.change_abs,
            "change_pct": self.change_pct,
            "currency": self.currency,
            "market_cap": self.market_cap,
            "volume": self.volume,
            "timestamp": self.timestamp,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class Holding:
    """One line of a portfolio as read from portfolio storage."""

    ticker: str
    quantity: float = 0.0
    cost_basis: float = 0.0
    asset_class: AssetClass | None = None  # Overrides the classifier when set


@dataclass(frozen=True, slots=True)
class MarketSession:
    is_open_now: bool
    refresh_interval: float  # seconds


@dataclass(frozen=True, slots=True)
class ErrorLogEntry:
    """Diagnostic record of one failed provider call."""

    code: ErrorCode
    message: str
    ticker: str
    timestamp: float
    source: str = ""


class ProviderError(Exception):
    """A provider call failed. ``code`` is always one of the recoverable codes."""

    def __init__(
        self,
        code: ErrorCode,
        ticker: str,
        message: str = "",
        timestamp: float | None = None,
    ) -> None:
        self.code = code
        self.ticker = ticker
        self.message = message or code.value
        self.timestamp = timestamp if timestamp is not None else time.time()
        super().__init__(f"{code.value.upper()}: {ticker} - {self.message}")

    @property
    def retryable(self) -> bool:
        """Worth a short backoff-and-retry within the same cycle."""
        return self.code is ErrorCode.RATE_LIMITED


class PriceUnavailableError(Exception):
    """Terminal failure: no source can price this ticker.

    ``code`` is ``UNSUPPORTED`` (every source exhausted, the price must be
    entered manually) or ``INVALID_ASSET_CLASS`` (never quoted, e.g. real estate).
    """

    def __init__(self, code: ErrorCode, ticker: str, message: str = "") -> None:
        self.code = code
        self.ticker = ticker
        self.message = message
        super().__init__(f"{code.value.upper()}: {ticker}" + (f" - {message}" if message else ""))
