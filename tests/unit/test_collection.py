"""
Data collection tests: live quotes, quote cache, stale cache and peg
fallback, and the data-quality grade
"""

import pytest

from stableguard.collection import DataCollector, assess_data_quality
from stableguard.models import DataQuality, QuoteSource
from stableguard.resilience import QuoteCache
from tests.factories import FakeClock, healthy_source, make_observation

pytestmark = pytest.mark.unit


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return healthy_source()


@pytest.fixture
def collector(source, clock):
    return DataCollector(source, cache=QuoteCache(ttl=60, clock=clock), clock=clock)


@pytest.mark.asyncio
async def test_live_quotes(collector, clock):
    output = await collector.collect(["usdt", "usdc", "dai"])

    assert [o.asset_id for o in output.observations] == ["usdt", "usdc", "dai"]
    assert all(o.source == QuoteSource.LIVE for o in output.observations)
    assert output.data_quality == DataQuality.HIGH
    assert output.errors == []

    observation = output.observations[0]
    assert observation.timestamp == clock()
    assert observation.price == 1.0
    assert observation.market_cap == 1e11
    assert observation.large_transfers == []


@pytest.mark.asyncio
async def test_fresh_cache_skips_network(collector, source, clock):
    await collector.collect(["usdt"])
    clock.advance(30)

    output = await collector.collect(["usdt"])

    assert source.calls == ["usdt"]
    assert output.observations[0].source == QuoteSource.CACHE
    assert output.data_quality == DataQuality.HIGH


@pytest.mark.asyncio
async def test_expired_cache_refetches(collector, source, clock):
    await collector.collect(["usdt"])
    clock.advance(61)

    output = await collector.collect(["usdt"])

    assert source.calls == ["usdt", "usdt"]
    assert output.observations[0].source == QuoteSource.LIVE


@pytest.mark.asyncio
async def test_stale_cache_on_failure(collector, source, clock):
    source.set_quote("usdt", price=0.998)
    await collector.collect(["usdt"])
    clock.advance(120)
    source.fail_all = True

    output = await collector.collect(["usdt"])

    observation = output.observations[0]
    assert observation.source == QuoteSource.STALE_CACHE
    assert observation.price == 0.998
    assert output.data_quality == DataQuality.LOW


@pytest.mark.asyncio
async def test_peg_fallback_when_cache_too_old(collector, source, clock):
    source.set_quote("usdt", price=0.998)
    await collector.collect(["usdt"])
    clock.advance(300)
    source.fail_all = True

    output = await collector.collect(["usdt"])

    observation = output.observations[0]
    assert observation.source == QuoteSource.FALLBACK
    assert observation.price == 1.0
    assert observation.market_cap == 0.0


@pytest.mark.asyncio
async def test_total_outage_never_raises(collector, source):
    source.fail_all = True

    output = await collector.collect(["usdt", "usdc", "dai"])

    assert len(output.observations) == 3
    assert all(o.source == QuoteSource.FALLBACK for o in output.observations)
    assert output.data_quality == DataQuality.LOW
    assert output.errors == []


@pytest.mark.asyncio
async def test_partial_outage_grades_medium(collector, source):
    source.failing = {"dai"}

    output = await collector.collect(["usdt", "usdc", "dai"])

    assert output.data_quality == DataQuality.MEDIUM


@pytest.mark.asyncio
async def test_unknown_asset_reported(collector):
    output = await collector.collect(["usdt", "doge"])

    assert [o.asset_id for o in output.observations] == ["usdt"]
    assert len(output.errors) == 1
    assert output.errors[0].startswith("doge:")


@pytest.mark.asyncio
async def test_clear_cache(collector, source):
    await collector.collect(["usdt"])
    collector.clear_cache()

    await collector.collect(["usdt"])

    assert source.calls == ["usdt", "usdt"]


@pytest.mark.parametrize(
    "live,requested,expected",
    [
        (5, 5, DataQuality.HIGH),
        (4, 5, DataQuality.HIGH),
        (3, 5, DataQuality.MEDIUM),
        (1, 2, DataQuality.MEDIUM),
        (2, 5, DataQuality.LOW),
        (0, 0, DataQuality.LOW),
    ],
)
def test_data_quality_grade(live, requested, expected):
    observations = [make_observation() for _ in range(live)]
    observations += [
        make_observation(asset_id="dai") for _ in range(requested - live)
    ]
    for observation in observations[live:]:
        observation.source = QuoteSource.FALLBACK

    assert assess_data_quality(observations, requested) == expected
