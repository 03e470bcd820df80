"""
Tracked asset registry — static metadata for every pegged asset we monitor.

NAV / yield-accruing tokens appreciate by design, so they are excluded from
depeg detection and scoring entirely.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from pydantic import BaseModel, Field

GRAMS_PER_TROY_OUNCE = 31.1035


class TrackedAsset(BaseModel):
    id: str
    symbol: str
    name: str = ""
    peg_type: str = "USD"
    gold_ounces: Optional[float] = Field(
        default=None,
        description="Troy ounces of the commodity per token (commodity pegs only)"
    )
    nav_token: bool = Field(default=False, description="Yield-accruing, excluded from detection")


DEFAULT_ASSETS = [
    TrackedAsset(id="1", symbol="USDT", name="Tether", peg_type="USD"),
    TrackedAsset(id="2", symbol="USDC", name="USD Coin", peg_type="USD"),
    TrackedAsset(id="5", symbol="DAI", name="Dai", peg_type="USD"),
    TrackedAsset(id="50", symbol="EURC", name="Euro Coin", peg_type="EUR"),
    TrackedAsset(id="gold-xaut", symbol="XAUT", name="Tether Gold", peg_type="GOLD", gold_ounces=1.0),
    TrackedAsset(id="gold-paxg", symbol="PAXG", name="PAX Gold", peg_type="GOLD", gold_ounces=1.0),
    TrackedAsset(
        id="gold-kau", symbol="KAU", name="Kinesis Gold", peg_type="GOLD",
        gold_ounces=1 / GRAMS_PER_TROY_OUNCE,
    ),
    TrackedAsset(id="146", symbol="sUSDe", name="Staked USDe", peg_type="USD", nav_token=True),
]


class AssetRegistry:
    """In-memory lookup over the tracked asset list."""

    def __init__(self, assets: Iterable[TrackedAsset] = DEFAULT_ASSETS) -> None:
        self._assets: dict[str, TrackedAsset] = {a.id: a for a in assets}

    def get(self, asset_id: str) -> Optional[TrackedAsset]:
        return self._assets.get(asset_id)

    def all(self) -> list[TrackedAsset]:
        return list(self._assets.values())

    def detectable(self) -> list[TrackedAsset]:
        """Assets eligible for depeg detection and scoring."""
        return [a for a in self._assets.values() if not a.nav_token]

    def gold_ounces(self) -> dict[str, float]:
        return {
            a.id: a.gold_ounces
            for a in self._assets.values()
            if a.gold_ounces is not None
        }

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._assets

    def __iter__(self) -> Iterator[TrackedAsset]:
        return iter(self._assets.values())

    def __len__(self) -> int:
        return len(self._assets)
