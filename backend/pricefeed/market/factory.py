"""Factory for creating the price orchestrator and price queries."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable

from .cache import QuoteCache
from .coingecko import CoinGeckoProvider
from .facade import PriceQueryFacade
from .models import Holding
from .offline_prices import OfflinePriceProvider
from .orchestrator import PriceOrchestrator, default_registry
from .yahoo import YahooFinanceProvider

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def _http_timeout() -> float | None:
    raw = os.environ.get("PRICEFEED_HTTP_TIMEOUT", "").strip()
    if not raw:
        return None
    try:
        timeout = float(raw)
    except ValueError:
        logger.warning("Ignoring PRICEFEED_HTTP_TIMEOUT=%r: not a number", raw)
        return None
    if timeout <= 0:
        logger.warning("Ignoring PRICEFEED_HTTP_TIMEOUT=%r: must be positive", raw)
        return None
    return timeout


def create_price_orchestrator(cache: QuoteCache | None = None) -> PriceOrchestrator:
    """Create an orchestrator wired according to environment variables.

    - PRICEFEED_OFFLINE truthy → offline table only (no network providers)
    - COINGECKO_API_KEY set and non-empty → CoinGecko with the demo-key header
    - PRICEFEED_HTTP_TIMEOUT → per-call timeout for both network providers

    Returns an unstarted orchestrator. Caller must await orchestrator.start().
    """
    cache = cache if cache is not None else QuoteCache()
    offline = OfflinePriceProvider()

    if os.environ.get("PRICEFEED_OFFLINE", "").strip().lower() in _TRUTHY:
        logger.info("Price providers: offline table only")
        return PriceOrchestrator(cache=cache, registry=default_registry(offline=offline))

    api_key = os.environ.get("COINGECKO_API_KEY", "").strip()
    timeout = _http_timeout()
    crypto = CoinGeckoProvider(api_key=api_key, timeout=timeout)
    equity = YahooFinanceProvider(timeout=timeout)

    logger.info(
        "Price providers: CoinGecko (%s), Yahoo Finance, offline table",
        "demo key" if api_key else "public",
    )
    return PriceOrchestrator(cache=cache, registry=default_registry(crypto, equity, offline))


def create_price_query(
    holdings: Iterable[Holding],
    currency: str = "USD",
    orchestrator: PriceOrchestrator | None = None,
) -> PriceQueryFacade:
    """Price query for a holdings list in ``currency``.

    Returns an unstarted query. Caller must await query.start(); the
    orchestrator's own lifecycle stays with whoever created it.
    """
    if orchestrator is None:
        orchestrator = create_price_orchestrator()
    return PriceQueryFacade(orchestrator, holdings, currency)
