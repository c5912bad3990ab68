"""
Market Data Sources
CoinGecko quote client plus the on-chain data placeholder used by the
data collection stage
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from config import API_TIMEOUT, COINGECKO_BASE_URL
from stableguard.assets import AssetConfig
from stableguard.models import LargeTransfer, MarketQuote
from stableguard.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

SIMPLE_PRICE_PATH = "/simple/price"


class PriceSourceError(Exception):
    """Raised when a quote cannot be obtained; callers fall back, never abort"""

    pass


class PriceSource(ABC):
    """Source of current market quotes"""

    name = "price_source"

    @abstractmethod
    async def fetch_quote(self, asset: AssetConfig) -> MarketQuote:
        """Return the current quote or raise PriceSourceError"""

    def status(self) -> Dict[str, Any]:
        return {"name": self.name}


class CoinGeckoPriceSource(PriceSource):
    """Fetches price, 24h change, 24h volume and market cap from CoinGecko"""

    name = "coingecko"

    def __init__(
        self,
        base_url: str = COINGECKO_BASE_URL,
        timeout: float = API_TIMEOUT,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(
            "coingecko", expected_exception=(PriceSourceError,)
        )
        self._transport = transport

    async def fetch_quote(self, asset: AssetConfig) -> MarketQuote:
        try:
            return await self.breaker.acall(self._request_quote, asset)
        except PriceSourceError:
            raise
        except Exception as e:
            # Open circuit or anything unexpected is still just a failed fetch
            raise PriceSourceError(f"{asset.id}: {e}") from e

    async def _request_quote(self, asset: AssetConfig) -> MarketQuote:
        params = {
            "ids": asset.coingecko_id,
            "vs_currencies": "usd",
            "include_market_cap": "true",
            "include_24hr_vol": "true",
            "include_24hr_change": "true",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}{SIMPLE_PRICE_PATH}",
                    params=params,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException:
            logger.error(f"Timeout while fetching {asset.id} quote from CoinGecko")
            raise PriceSourceError("CoinGecko API timeout")
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error from CoinGecko: {e.response.status_code}")
            if e.response.status_code == 429:
                logger.error("CoinGecko rate limit exceeded")
            raise PriceSourceError(f"CoinGecko API error: {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            raise PriceSourceError(f"CoinGecko request failed: {e}")

        return parse_quote(data, asset.coingecko_id)

    def status(self) -> Dict[str, Any]:
        return {"name": self.name, "circuit": self.breaker.status()}


class OfflinePriceSource(PriceSource):
    """Never reaches the network; every asset degrades to cache or peg"""

    name = "offline"

    async def fetch_quote(self, asset: AssetConfig) -> MarketQuote:
        raise PriceSourceError("Price API disabled (offline mode)")


def parse_quote(data: Any, coin_id: str) -> MarketQuote:
    """Validate a /simple/price payload for one coin"""
    if not isinstance(data, dict) or not isinstance(data.get(coin_id), dict):
        raise PriceSourceError(f"No data returned for {coin_id}")

    coin = data[coin_id]
    try:
        price = float(coin["usd"])
        quote = MarketQuote(
            price=price,
            change_24h=float(coin.get("usd_24h_change") or 0.0),
            volume_24h=float(coin.get("usd_24h_vol") or 0.0),
            market_cap=float(coin.get("usd_market_cap") or 0.0),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise PriceSourceError(f"Malformed quote for {coin_id}: {e}")

    if not price > 0:
        raise PriceSourceError(f"Non-positive price for {coin_id}: {price}")
    return quote


class ChainDataSource(ABC):
    """On-chain supply and large-transfer data"""

    @abstractmethod
    async def fetch_chain_data(self, asset: AssetConfig) -> Dict[str, Any]:
        """Return {"total_supply": Optional[str], "large_transfers": [...]}"""


class NullChainSource(ChainDataSource):
    """Placeholder until on-chain transfer monitoring is wired in"""

    async def fetch_chain_data(self, asset: AssetConfig) -> Dict[str, Any]:
        logger.debug(f"Chain data collection not available for {asset.id}")
        transfers: List[LargeTransfer] = []
        return {"total_supply": None, "large_transfers": transfers}
