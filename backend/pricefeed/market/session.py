"""Market session windows and the poll interval derived from them."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from zoneinfo import ZoneInfo

from .classifier import classify
from .models import AssetClass, MarketSession

# All windows are expressed in the domestic exchange's local time
REFERENCE_TZ = ZoneInfo("Asia/Seoul")

FAST_INTERVAL = 120.0  # 2 minutes
SLOW_INTERVAL = 600.0  # 10 minutes

# KRX regular session, 09:00-15:30 inclusive
DOMESTIC_OPEN_MINUTE = 9 * 60
DOMESTIC_CLOSE_MINUTE = 15 * 60 + 30

# US regular session seen from Seoul, 22:30-06:00. Wraps past midnight and
# spans both the daylight-saving (22:30-05:00) and standard (23:30-06:00) opens.
FOREIGN_OPEN_MINUTE = 22 * 60 + 30
FOREIGN_CLOSE_MINUTE = 6 * 60


def _minute_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def _is_weekday(now: datetime) -> bool:
    return now.weekday() < 5


def in_window(minute: int, open_minute: int, close_minute: int) -> bool:
    """Whether ``minute`` falls in [open, close], wrapping past midnight when open > close."""
    if open_minute <= close_minute:
        return open_minute <= minute <= close_minute
    return minute >= open_minute or minute <= close_minute


def domestic_session_open(now: datetime) -> bool:
    return _is_weekday(now) and in_window(_minute_of_day(now), DOMESTIC_OPEN_MINUTE, DOMESTIC_CLOSE_MINUTE)


def foreign_session_open(now: datetime) -> bool:
    # The weekday gate stays separate from the wrap-around check: on its own
    # the wrap-around check would also be true early on Saturday and Sunday.
    return _is_weekday(now) and in_window(_minute_of_day(now), FOREIGN_OPEN_MINUTE, FOREIGN_CLOSE_MINUTE)


def _local_now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(REFERENCE_TZ)
    if now.tzinfo is None:
        return now.replace(tzinfo=REFERENCE_TZ)
    return now.astimezone(REFERENCE_TZ)


def market_session(
    tickers: Iterable[str],
    now: datetime | None = None,
    asset_classes: dict[str, AssetClass] | None = None,
) -> MarketSession:
    """Poll cadence for a ticker set at ``now``.

    Fast while any market relevant to the set is trading: the domestic
    session for KRX listings, the overnight US session for other
    equities and ETFs, and always for crypto. Slow otherwise.

    ``now`` defaults to the current time; naive datetimes are taken to be
    Seoul local time. ``asset_classes`` overrides the classifier per ticker.
    """
    local = _local_now(now)
    overrides = asset_classes or {}
    classes = {overrides.get(t) or classify(t) for t in tickers}

    if AssetClass.DOMESTIC_STOCK in classes and domestic_session_open(local):
        return MarketSession(is_open_now=True, refresh_interval=FAST_INTERVAL)
    if AssetClass.CRYPTO in classes:
        return MarketSession(is_open_now=True, refresh_interval=FAST_INTERVAL)
    if classes & {AssetClass.STOCK, AssetClass.ETF} and foreign_session_open(local):
        return MarketSession(is_open_now=True, refresh_interval=FAST_INTERVAL)
    return MarketSession(is_open_now=False, refresh_interval=SLOW_INTERVAL)


def refresh_interval(tickers: Iterable[str], now: datetime | None = None) -> float:
    return market_session(tickers, now).refresh_interval
