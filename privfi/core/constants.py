"""Starknet tokens known to the privacy pool and their minimum deposit sizes."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    address: str
    decimals: int
    min_deposit: Decimal  # whole-token units

    @property
    def min_deposit_base_units(self) -> int:
        return int(self.min_deposit * (Decimal(10) ** self.decimals))


def normalize_address(address: str) -> str:
    """Canonical lowercase felt form without leading zero padding ("0x4718f5...")."""
    text = address.strip().lower()
    try:
        return hex(int(text, 16))
    except ValueError:
        return text


_TOKENS = [
    TokenInfo(
        symbol="ETH",
        address="0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7",
        decimals=18,
        min_deposit=Decimal("0.001"),
    ),
    TokenInfo(
        symbol="STRK",
        address="0x04718f5a0fc34cc1af16a1cdee98ffb20c31f5cd61d6ab07201858f4287c938d",
        decimals=18,
        min_deposit=Decimal("10"),
    ),
    TokenInfo(
        symbol="USDC",
        address="0x053c91253bc9682c04929ca02ed00b3e423f6710d2ee7e0d5ebb06f3ecf368a8",
        decimals=6,
        min_deposit=Decimal("1"),
    ),
    TokenInfo(
        symbol="WBTC",
        address="0x03fe2b97c1fd336e750087d68b9b867997fd64a2661ff3ca5a7c771641e8e7ac",
        decimals=8,
        min_deposit=Decimal("0.00005"),
    ),
]

TOKENS_BY_ADDRESS: Dict[str, TokenInfo] = {normalize_address(t.address): t for t in _TOKENS}


def get_token(address: str) -> Optional[TokenInfo]:
    return TOKENS_BY_ADDRESS.get(normalize_address(address))


def min_deposit_amount(address: str) -> Optional[int]:
    """Minimum amount in base units, or None for tokens outside the registry."""
    token = get_token(address)
    return token.min_deposit_base_units if token else None
