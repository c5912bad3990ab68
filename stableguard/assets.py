"""
Monitored Asset Registry
Stablecoins the risk pipeline can assess, with their contract addresses per chain
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class AssetConfig:
    """Static definition of a monitored stablecoin"""

    id: str
    name: str
    symbol: str
    coingecko_id: str
    backing_type: str  # "fiat-backed", "crypto-backed", "algorithmic"
    decimals: int
    peg_target: float = 1.0
    addresses: Dict[int, str] = field(default_factory=dict)  # chain id -> contract


# Chain ids: 1 Ethereum, 56 BSC, 137 Polygon, 42161 Arbitrum, 10 Optimism, 8453 Base
USDT = AssetConfig(
    "usdt",
    "Tether USD",
    "USDT",
    "tether",
    "fiat-backed",
    decimals=6,
    addresses={
        1: "0xdAC17F958D2ee523a2206206994597C13D831ec7",
        56: "0x55d398326f99059fF775485246999027B3197955",
        137: "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
        42161: "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9",
        10: "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58",
        8453: "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2",
    },
)

USDC = AssetConfig(
    "usdc",
    "USD Coin",
    "USDC",
    "usd-coin",
    "fiat-backed",
    decimals=6,
    addresses={
        1: "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        56: "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",
        137: "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",  # bridged
        42161: "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        10: "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        8453: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    },
)

DAI = AssetConfig(
    "dai",
    "Dai Stablecoin",
    "DAI",
    "dai",
    "crypto-backed",
    decimals=18,
    addresses={
        1: "0x6B175474E89094C44Da98b954EedeAC495271d0F",
        56: "0x1AF3F329e8BE154074D8769D1FFa4eE058B1DBc3",
        137: "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063",
        42161: "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1",
        10: "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1",
        8453: "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb",
    },
)

BUSD = AssetConfig(
    "busd",
    "Binance USD",
    "BUSD",
    "binance-usd",
    "fiat-backed",
    decimals=18,
    addresses={
        1: "0x4Fabb145d64652a948d72533023f6E7A623C7C53",
        56: "0xe9e7CEA3DedcA5984780Bafc599bD69ADd087D56",
    },
)

FRAX = AssetConfig(
    "frax",
    "Frax",
    "FRAX",
    "frax",
    "algorithmic",
    decimals=18,
    addresses={
        1: "0x853d955aCEf822Db058eb8505911ED77F175b99e",
        56: "0x90C97F71E18723b0Cf0dfa30ee176Ab653E89F40",
        137: "0x45c32fA6DF82ead1e2EF74d17b76547EDdFaFF89",
        42161: "0x17FC002b466eEc40DaE837Fc4bE5c67993ddBd6F",
        10: "0x2E3D870790dC77A83DD1d18184Acc7439A53f475",
    },
)

ALL_ASSETS = [USDT, USDC, DAI, BUSD, FRAX]

# Monitored by default
DEFAULT_MONITORED = ["usdt", "usdc", "dai"]

ASSET_MAP = {asset.id: asset for asset in ALL_ASSETS}


def get_asset(asset_id: str) -> Optional[AssetConfig]:
    """Get asset definition by id"""
    return ASSET_MAP.get(asset_id.lower())


def all_asset_ids() -> List[str]:
    return [asset.id for asset in ALL_ASSETS]


def asset_address(asset_id: str, chain_id: int) -> Optional[str]:
    """Contract address of an asset on a chain, if deployed there"""
    asset = get_asset(asset_id)
    if not asset:
        return None
    return asset.addresses.get(chain_id)


def match_contract(address: Optional[str], chain_id: int) -> Optional[AssetConfig]:
    """Find the monitored asset whose contract lives at address on chain_id"""
    if not address:
        return None

    normalized = address.lower()
    for asset in ALL_ASSETS:
        contract = asset.addresses.get(chain_id)
        if contract and contract.lower() == normalized:
            return asset
    return None
