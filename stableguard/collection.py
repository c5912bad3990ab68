"""
Data Collection Stage
Fetches market quotes for monitored assets with cache and peg fallback,
producing one normalized observation per asset plus a data-quality grade
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Tuple

from stableguard.assets import AssetConfig, get_asset
from stableguard.models import (
    CollectionOutput,
    DataQuality,
    MarketQuote,
    QuoteSource,
    RawObservation,
)
from stableguard.prices import ChainDataSource, NullChainSource, PriceSource
from stableguard.resilience import QuoteCache

logger = logging.getLogger(__name__)

# Sources that count as a successful fetch for the quality grade
HEALTHY_SOURCES = (QuoteSource.LIVE, QuoteSource.CACHE)


class UnknownAssetError(Exception):
    """Raised for asset ids missing from the registry"""

    pass


class DataCollector:
    """Owns the quote cache; the only writer to it"""

    def __init__(
        self,
        price_source: PriceSource,
        chain_source: Optional[ChainDataSource] = None,
        cache: Optional[QuoteCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.price_source = price_source
        self.chain_source = chain_source or NullChainSource()
        self.cache = cache or QuoteCache(clock=clock)
        self._clock = clock

    async def collect(self, asset_ids: List[str]) -> CollectionOutput:
        """
        Collect one observation per asset

        Args:
            asset_ids: Registry ids of the assets to observe

        Returns:
            CollectionOutput with observations, data quality and per-asset errors.
            A failing price source never raises; assets degrade to cache or peg.
        """
        started = time.perf_counter()
        logger.info(f"Starting data collection for {asset_ids}")

        results = await asyncio.gather(
            *(self._collect_asset(asset_id) for asset_id in asset_ids),
            return_exceptions=True,
        )

        observations: List[RawObservation] = []
        errors: List[str] = []
        for asset_id, result in zip(asset_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to collect data for {asset_id}: {result}")
                errors.append(f"{asset_id}: {result}")
            else:
                observations.append(result)

        quality = assess_data_quality(observations, len(asset_ids))
        elapsed = time.perf_counter() - started

        if quality != DataQuality.HIGH:
            logger.warning(f"Data quality degraded to {quality.value}")
        logger.info(
            f"Collection completed in {elapsed * 1000:.0f}ms, quality: {quality.value}"
        )

        return CollectionOutput(
            observations=observations,
            collection_time=elapsed,
            data_quality=quality,
            errors=errors,
        )

    async def _collect_asset(self, asset_id: str) -> RawObservation:
        asset = get_asset(asset_id)
        if not asset:
            raise UnknownAssetError(f"Unknown stablecoin: {asset_id}")

        quote_result, chain_result = await asyncio.gather(
            self._quote(asset),
            self.chain_source.fetch_chain_data(asset),
            return_exceptions=True,
        )

        if isinstance(quote_result, BaseException):
            # _quote already absorbs source failures; this is a programming error
            logger.error(f"Quote resolution failed for {asset.id}: {quote_result}")
            quote, source = _peg_quote(asset), QuoteSource.FALLBACK
        else:
            quote, source = quote_result

        observation = RawObservation(
            asset_id=asset.id,
            timestamp=self._clock(),
            price=quote.price,
            price_change_24h=quote.change_24h,
            volume_24h=quote.volume_24h,
            market_cap=quote.market_cap,
            source=source,
            sentiment_score=0.0,
            news_count=0,
        )

        if isinstance(chain_result, BaseException):
            logger.warning(f"Chain data failed for {asset.id}: {chain_result}")
        else:
            observation.total_supply = chain_result.get("total_supply")
            observation.large_transfers = list(chain_result.get("large_transfers") or [])

        return observation

    async def _quote(self, asset: AssetConfig) -> Tuple[MarketQuote, QuoteSource]:
        cached = self.cache.fresh(asset.id)
        if cached is not None:
            logger.debug(f"Using cached quote for {asset.id}")
            return cached, QuoteSource.CACHE

        try:
            quote = await self.price_source.fetch_quote(asset)
        except Exception as e:
            logger.warning(f"Price fetch failed for {asset.id}: {e}")

            stale = self.cache.usable(asset.id)
            if stale is not None:
                logger.info(f"Using stale cache for {asset.id}")
                return stale, QuoteSource.STALE_CACHE

            logger.info(
                f"Using peg target ({asset.peg_target}) as price for {asset.id}"
            )
            return _peg_quote(asset), QuoteSource.FALLBACK

        self.cache.put(asset.id, quote)
        logger.debug(f"Fetched price for {asset.id}: {quote.price}")
        return quote, QuoteSource.LIVE

    def clear_cache(self) -> None:
        self.cache.clear()


def _peg_quote(asset: AssetConfig) -> MarketQuote:
    return MarketQuote(price=asset.peg_target)


def assess_data_quality(
    observations: List[RawObservation], requested: int
) -> DataQuality:
    """Grade the cycle by the fraction of requested assets served healthily"""
    if requested <= 0:
        return DataQuality.LOW

    healthy = sum(1 for o in observations if o.source in HEALTHY_SOURCES)
    success_rate = healthy / requested
    if success_rate >= 0.8:
        return DataQuality.HIGH
    elif success_rate >= 0.5:
        return DataQuality.MEDIUM
    else:
        return DataQuality.LOW
