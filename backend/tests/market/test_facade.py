"""Tests for PriceQueryFacade."""

import asyncio
from datetime import datetime

import pytest

from pricefeed.market.cache import QuoteCache
from pricefeed.market.facade import PriceQueryFacade, QuoteState, ticker_key
from pricefeed.market.models import AssetClass, ErrorCode, Holding
from pricefeed.market.orchestrator import PriceOrchestrator, default_registry
from pricefeed.market.session import FAST_INTERVAL, REFERENCE_TZ, SLOW_INTERVAL

MONDAY_NIGHT = datetime(2026, 10, 19, 23, 0, tzinfo=REFERENCE_TZ)


def _holdings(*tickers: str) -> list[Holding]:
    return [Holding(ticker=t, quantity=1.0, cost_basis=100.0) for t in tickers]


DEFAULT_PRICES = {"AAPL": 190.0, "MSFT": 380.0, "BTC": 67000.0}


def _setup(clock, fake_provider, prices=None, **provider_kwargs):
    """Orchestrator over one fake equity/crypto provider with a 1s TTL."""
    if prices is None:
        prices = DEFAULT_PRICES
    provider = fake_provider("fake", prices, cache_ttl=1, **provider_kwargs)
    orchestrator = PriceOrchestrator(
        cache=QuoteCache(clock=clock),
        registry=default_registry(crypto=provider, equity=provider),
        rate_limit_backoff=0,
    )
    return orchestrator, provider


def _facade(orchestrator, clock, holdings, **kwargs) -> PriceQueryFacade:
    return PriceQueryFacade(
        orchestrator,
        holdings,
        "USD",
        clock=clock,
        session_clock=lambda: MONDAY_NIGHT,
        **kwargs,
    )


class TestTickerKey:
    """Tests for the stable ticker-set identity."""

    def test_order_independent(self):
        """Holding order does not change the key."""
        assert ticker_key(_holdings("MSFT", "AAPL")) == ticker_key(_holdings("AAPL", "MSFT")) == "AAPL,MSFT"

    def test_ignores_quantities_and_case(self):
        """Only the ticker set matters."""
        a = [Holding("aapl", 1, 10), Holding("BTC", 2, 20)]
        b = [Holding("BTC", 5, 99), Holding("AAPL", 7, 1), Holding(" aapl ", 1, 1)]
        assert ticker_key(a) == ticker_key(b)

    def test_skips_real_estate_and_blanks(self):
        """Unquotable holdings are left out."""
        holdings = [Holding("APT-1", asset_class=AssetClass.REAL_ESTATE), Holding(""), Holding("AAPL")]
        assert ticker_key(holdings) == "AAPL"


@pytest.mark.asyncio
class TestPriceQueryFacade:
    """Unit tests for the polled quote state."""

    async def test_start_fetches_and_stop_cancels(self, clock, fake_provider):
        """start() fetches once and starts the poller; stop() cancels it."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL", "BTC"))

        await query.start()
        state = query.state

        assert set(state.quotes) == {"AAPL", "BTC"}
        assert state.is_loading is False
        assert state.error is None
        assert state.last_refresh_timestamp == clock.now
        assert query._poller is not None and query._poller.running

        await query.stop()
        assert query._poller is None
        await query.stop()

    async def test_freshness_floor(self, clock, fake_provider):
        """Repeat requests within 60s reuse the current quotes."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL"))

        await query.ensure_fresh()
        clock.advance(30)
        await query.ensure_fresh()
        assert provider.calls == ["AAPL"]

        clock.advance(31)
        await query.ensure_fresh()
        assert provider.calls == ["AAPL", "AAPL"]

    async def test_floor_shorter_than_cache_ttl(self, clock, fake_provider):
        """Past the floor the facade asks again; the cache still answers."""
        provider = fake_provider("fake", {"AAPL": 190.0})
        orchestrator = PriceOrchestrator(cache=QuoteCache(clock=clock), registry=default_registry(equity=provider))
        query = _facade(orchestrator, clock, _holdings("AAPL"))

        await query.ensure_fresh()
        version = query.version
        clock.advance(61)
        await query.ensure_fresh()

        assert query.version > version
        assert provider.calls == ["AAPL"]

    async def test_concurrent_requests_share_one_fetch(self, clock, fake_provider):
        """Overlapping requests join the fetch already in flight."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL"))
        await asyncio.gather(query.ensure_fresh(), query.ensure_fresh(), query.ensure_fresh())
        assert provider.calls == ["AAPL"]

    async def test_refresh_bypasses_floor_and_cache(self, clock, fake_provider):
        """refresh() clears the cache for the set and fetches now."""
        provider = fake_provider("fake", {"AAPL": 190.0, "MSFT": 380.0})
        orchestrator = PriceOrchestrator(cache=QuoteCache(clock=clock), registry=default_registry(equity=provider))
        query = _facade(orchestrator, clock, _holdings("AAPL", "MSFT"))

        await query.ensure_fresh()
        await query.refresh()

        assert sorted(provider.calls) == ["AAPL", "AAPL", "MSFT", "MSFT"]

    async def test_refresh_single_ticker(self, clock, fake_provider):
        """refresh(ticker) only drops that ticker's cached quote."""
        provider = fake_provider("fake", {"AAPL": 190.0, "MSFT": 380.0})
        orchestrator = PriceOrchestrator(cache=QuoteCache(clock=clock), registry=default_registry(equity=provider))
        query = _facade(orchestrator, clock, _holdings("AAPL", "MSFT"))

        await query.ensure_fresh()
        await query.refresh("msft")

        assert sorted(provider.calls) == ["AAPL", "MSFT", "MSFT"]

    async def test_unchanged_ticker_set_does_not_refetch(self, clock, fake_provider):
        """New quantities for the same tickers keep the query identity."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL"))
        await query.ensure_fresh()

        await query.set_holdings([Holding("AAPL", quantity=50, cost_basis=1)])

        assert provider.calls == ["AAPL"]

    async def test_changed_ticker_set_fetches(self, clock, fake_provider):
        """Adding a ticker fetches right away, despite the floor."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL"))
        await query.ensure_fresh()

        state = await query.set_holdings(_holdings("AAPL", "MSFT"))

        assert set(state.quotes) == {"AAPL", "MSFT"}
        assert query.ticker_key == "AAPL,MSFT"

    async def test_changed_ticker_set_during_fetch(self, clock, fake_provider):
        """Swapping holdings mid-fetch does not join the old fetch or keep its result."""
        orchestrator, provider = _setup(clock, fake_provider, prices={"BTC": 67000.0, "ETH": 3500.0})
        entered = asyncio.Event()
        gate = asyncio.Event()
        real_fetch = provider.fetch_one

        async def slow_fetch(ticker, currency="USD"):
            entered.set()
            await gate.wait()
            return await real_fetch(ticker, currency)

        provider.fetch_one = slow_fetch
        query = _facade(orchestrator, clock, _holdings("BTC"))

        first = asyncio.create_task(query.ensure_fresh())
        await entered.wait()
        swap = asyncio.create_task(query.set_holdings(_holdings("ETH")))
        await asyncio.sleep(0)
        gate.set()
        await first
        state = await swap

        assert provider.calls == ["BTC", "ETH"]
        assert set(state.quotes) == {"ETH"}
        assert set(query.state.quotes) == {"ETH"}

    async def test_removed_ticker_dropped(self, clock, fake_provider):
        """Quotes for tickers no longer held disappear."""
        orchestrator, _ = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL", "MSFT"))
        await query.ensure_fresh()
        await query.set_holdings(_holdings("AAPL"))
        assert set(query.quotes) == {"AAPL"}

    async def test_interval_follows_ticker_set(self, clock, fake_provider):
        """Monday 23:00 Seoul: domestic-only is slow, adding a US stock is fast."""
        orchestrator, _ = _setup(clock, fake_provider, prices={"005930": 71000.0, "AAPL": 190.0})
        query = _facade(orchestrator, clock, _holdings("005930"))
        assert query.refresh_interval == SLOW_INTERVAL

        await query.set_holdings(_holdings("005930", "AAPL"))
        assert query.refresh_interval == FAST_INTERVAL
        assert query.state.is_market_open

    async def test_stale_data_preferred_over_error(self, clock, fake_provider):
        """When a refetch fails, old quotes stay and are flagged stale."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL", "MSFT"))
        await query.ensure_fresh()

        provider.failures["AAPL"] = ErrorCode.TIMEOUT
        clock.advance(61)
        state = await query.ensure_fresh()

        assert set(state.quotes) == {"AAPL", "MSFT"}
        assert state.is_stale is True
        assert state.error is None

    async def test_error_when_nothing_to_show(self, clock, fake_provider):
        """With no quotes at all the error is surfaced."""
        orchestrator, _ = _setup(clock, fake_provider, prices={})
        query = _facade(orchestrator, clock, _holdings("AAPL"))

        state = await query.ensure_fresh()

        assert state.quotes == {}
        assert state.error is not None
        assert "AAPL" in state.error
        assert state.last_refresh_timestamp is None

    async def test_error_cleared_on_success(self, clock, fake_provider):
        """The next successful fetch clears the error."""
        orchestrator, provider = _setup(clock, fake_provider, prices={})
        query = _facade(orchestrator, clock, _holdings("AAPL"))
        await query.ensure_fresh()

        provider.prices["AAPL"] = 190.0
        clock.advance(61)
        state = await query.ensure_fresh()

        assert state.error is None
        assert state.quotes["AAPL"].current_price == 190.0

    async def test_loading_then_refreshing(self, clock, fake_provider):
        """First fetch shows loading; later ones show refreshing over old data."""
        orchestrator, provider = _setup(clock, fake_provider)
        entered = asyncio.Event()
        gate = asyncio.Event()
        real_fetch = provider.fetch_one

        async def slow_fetch(ticker, currency="USD"):
            entered.set()
            await gate.wait()
            return await real_fetch(ticker, currency)

        provider.fetch_one = slow_fetch
        query = _facade(orchestrator, clock, _holdings("AAPL"))

        first = asyncio.create_task(query.ensure_fresh())
        await entered.wait()
        assert query.state.is_loading and not query.state.is_refreshing
        gate.set()
        await first

        entered.clear()
        gate.clear()
        second = asyncio.create_task(query.refresh())
        await entered.wait()
        assert query.state.is_refreshing and not query.state.is_loading
        assert "AAPL" in query.state.quotes
        gate.set()
        await second
        assert not query.state.is_refreshing

    async def test_paused_poll_does_nothing(self, clock, fake_provider):
        """No background fetches while the consumer is inactive."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL"))
        await query.ensure_fresh()

        query.pause()
        clock.advance(600)
        await query._poll()
        assert provider.calls == ["AAPL"]

        await query.resume()
        assert provider.calls == ["AAPL", "AAPL"]

    async def test_poll_refetches_when_due(self, clock, fake_provider):
        """An active poll past the floor fetches."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL"))
        await query.ensure_fresh()
        clock.advance(FAST_INTERVAL)
        await query._poll()
        assert len(provider.calls) == 2

    async def test_real_estate_holding_never_fetched(self, clock, fake_provider):
        """Real estate holdings are not quoted."""
        orchestrator, provider = _setup(clock, fake_provider, prices={"AAPL": 190.0, "APT": 1.0})
        holdings = [Holding("AAPL"), Holding("APT", asset_class=AssetClass.REAL_ESTATE)]
        query = _facade(orchestrator, clock, holdings)
        state = await query.ensure_fresh()
        assert set(state.quotes) == {"AAPL"}
        assert "APT" not in provider.calls

    async def test_empty_holdings(self, clock, fake_provider):
        """No holdings, no quotes, no error."""
        orchestrator, provider = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, [])
        state = await query.ensure_fresh()
        assert state.quotes == {}
        assert state.error is None
        assert provider.calls == []

    async def test_state_to_dict(self, clock, fake_provider):
        """The state serializes for JSON transport."""
        orchestrator, _ = _setup(clock, fake_provider)
        query = _facade(orchestrator, clock, _holdings("AAPL"))
        data = (await query.ensure_fresh()).to_dict()
        assert data["quotes"]["AAPL"]["current_price"] == 190.0
        assert data["is_loading"] is False
        assert data["refresh_interval"] == FAST_INTERVAL

    async def test_default_state(self):
        """An empty QuoteState is neither loading nor failing."""
        state = QuoteState()
        assert state.quotes == {}
        assert not state.is_loading
        assert state.error is None
