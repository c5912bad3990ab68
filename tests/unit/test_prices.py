"""
Price source and resilience tests: CoinGecko parsing over a mock transport,
circuit breaker transitions and quote cache ages
"""

import httpx
import pytest

from stableguard.assets import USDT
from stableguard.models import MarketQuote
from stableguard.prices import (
    CoinGeckoPriceSource,
    OfflinePriceSource,
    PriceSourceError,
    parse_quote,
)
from stableguard.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
    QuoteCache,
)
from tests.factories import FakeClock

pytestmark = pytest.mark.unit

TETHER_PAYLOAD = {
    "tether": {
        "usd": 0.9995,
        "usd_market_cap": 110_000_000_000,
        "usd_24h_vol": 45_000_000_000,
        "usd_24h_change": -0.03,
    }
}


def mock_source(handler, breaker=None):
    return CoinGeckoPriceSource(
        base_url="https://coingecko.test/api/v3",
        breaker=breaker,
        transport=httpx.MockTransport(handler),
    )


class TestParseQuote:
    def test_full_payload(self):
        quote = parse_quote(TETHER_PAYLOAD, "tether")

        assert quote == MarketQuote(
            price=0.9995,
            change_24h=-0.03,
            volume_24h=45_000_000_000,
            market_cap=110_000_000_000,
        )

    def test_optional_fields_default_to_zero(self):
        quote = parse_quote({"tether": {"usd": 1.0}}, "tether")

        assert quote.volume_24h == 0.0
        assert quote.market_cap == 0.0

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"tether": None},
            {"tether": {}},
            {"tether": {"usd": "n/a"}},
            {"tether": {"usd": 0}},
            [],
        ],
    )
    def test_rejects_bad_payloads(self, payload):
        with pytest.raises(PriceSourceError):
            parse_quote(payload, "tether")


class TestCoinGeckoPriceSource:
    @pytest.mark.asyncio
    async def test_fetch_quote(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=TETHER_PAYLOAD)

        quote = await mock_source(handler).fetch_quote(USDT)

        assert quote.price == 0.9995
        assert seen["path"] == "/api/v3/simple/price"
        assert seen["params"]["ids"] == "tether"
        assert seen["params"]["include_24hr_change"] == "true"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_http_error(self, status):
        source = mock_source(lambda request: httpx.Response(status))

        with pytest.raises(PriceSourceError, match=str(status)):
            await source.fetch_quote(USDT)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(PriceSourceError, match="timeout"):
            await mock_source(handler).fetch_quote(USDT)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        source = mock_source(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(PriceSourceError):
            await source.fetch_quote(USDT)

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        clock = FakeClock()
        breaker = CircuitBreaker(
            "coingecko",
            failure_threshold=2,
            recovery_timeout=60,
            expected_exception=(PriceSourceError,),
            clock=clock,
        )
        source = mock_source(handler, breaker)

        for _ in range(2):
            with pytest.raises(PriceSourceError):
                await source.fetch_quote(USDT)

        with pytest.raises(PriceSourceError, match="Circuit breaker open"):
            await source.fetch_quote(USDT)

        assert len(calls) == 2
        assert source.status()["circuit"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_offline_source_always_fails(self):
        with pytest.raises(PriceSourceError):
            await OfflinePriceSource().fetch_quote(USDT)


class TestCircuitBreaker:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            "test", failure_threshold=3, recovery_timeout=30, clock=clock
        )

    @staticmethod
    async def fail():
        raise RuntimeError("down")

    @staticmethod
    async def succeed():
        return "ok"

    async def trip(self, breaker):
        for _ in range(breaker.failure_threshold):
            with pytest.raises(RuntimeError):
                await breaker.acall(self.fail)

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        await self.trip(breaker)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.acall(self.succeed)

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker, clock):
        await self.trip(breaker)
        clock.advance(30)

        assert await breaker.acall(self.succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        await self.trip(breaker)
        clock.advance(30)

        with pytest.raises(RuntimeError):
            await breaker.acall(self.fail)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_count(self, breaker):
        with pytest.raises(RuntimeError):
            await breaker.acall(self.fail)
        await breaker.acall(self.succeed)

        assert breaker.failure_count == 0
        assert breaker.status() == {
            "name": "test",
            "state": "closed",
            "failure_count": 0,
        }


class TestQuoteCache:
    def test_fresh_and_usable_windows(self):
        clock = FakeClock()
        cache = QuoteCache(ttl=60, clock=clock)
        quote = MarketQuote(price=1.0)
        cache.put("usdt", quote)

        assert cache.fresh("usdt") is quote

        clock.advance(60)
        assert cache.fresh("usdt") is None
        assert cache.usable("usdt") is quote
        assert cache.age("usdt") == 60

        clock.advance(240)
        assert cache.usable("usdt") is None

    def test_missing_entry(self):
        cache = QuoteCache(ttl=60, clock=FakeClock())

        assert cache.age("usdt") is None
        assert cache.fresh("usdt") is None
        assert cache.usable("usdt") is None
