"""Price retrieval subsystem for pricefeed.

Public API:
    Quote               - Immutable price observation dataclass
    Holding             - One portfolio line (ticker, quantity, cost basis)
    AssetClass          - Closed enum of asset classes
    classify            - Ticker -> AssetClass
    QuoteCache          - Thread-safe expiring quote store
    QuoteProvider       - Abstract interface for quote sources
    PriceOrchestrator   - Cache + provider fallback chains
    market_session      - Market-aware poll interval for a ticker set
    PriceQueryFacade    - Polled quote state for a holdings list
    create_price_orchestrator / create_price_query - Environment-driven factories
    create_prices_router - FastAPI router factory for JSON + SSE endpoints
"""

from .cache import QuoteCache
from .classifier import classify
from .facade import PriceQueryFacade, QuoteState
from .factory import create_price_orchestrator, create_price_query
from .interface import QuoteProvider
from .models import (
    AssetClass,
    ErrorCode,
    Holding,
    MarketSession,
    PriceUnavailableError,
    ProviderError,
    Quote,
)
from .orchestrator import PriceOrchestrator
from .session import market_session
from .stream import create_prices_router

__all__ = [
    "AssetClass",
    "ErrorCode",
    "Holding",
    "MarketSession",
    "PriceOrchestrator",
    "PriceQueryFacade",
    "PriceUnavailableError",
    "ProviderError",
    "Quote",
    "QuoteCache",
    "QuoteProvider",
    "QuoteState",
    "classify",
    "create_price_orchestrator",
    "create_price_query",
    "create_prices_router",
    "market_session",
]
