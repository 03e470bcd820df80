"""Shared test fixtures."""

import pytest

from pegwatch import AssetRegistry, DepegMonitor, InMemoryEventStore, TrackedAsset


@pytest.fixture
def registry() -> AssetRegistry:
    """Small registry: two USD coins, one EUR coin, a gram gold token and a NAV token."""
    return AssetRegistry([
        TrackedAsset(id="1", symbol="USDT", name="Tether", peg_type="USD"),
        TrackedAsset(id="2", symbol="USDC", name="USD Coin", peg_type="USD"),
        TrackedAsset(id="50", symbol="EURC", name="Euro Coin", peg_type="EUR"),
        TrackedAsset(
            id="gold-g", symbol="GGT", name="Gram Gold", peg_type="GOLD",
            gold_ounces=1 / 31.1035,
        ),
        TrackedAsset(id="nav", symbol="sUSDe", name="Staked USDe", peg_type="USD", nav_token=True),
    ])


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def monitor(store: InMemoryEventStore, registry: AssetRegistry) -> DepegMonitor:
    return DepegMonitor(store, registry)
