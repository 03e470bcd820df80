"""
Depeg monitor — wires the reference deriver, lifecycle manager, event store
and scorer together for the jobs that run them.

Live cycle (once per snapshot):
1. Derive the peg reference table from the whole snapshot
2. For every detectable asset, under that asset's lock:
   a. load its open events and collapse duplicates
   b. evaluate the new observation
   c. persist closures and the still-open event

Backfill (per asset): rebuild the full history and replace it atomically.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Iterable, Mapping, Optional, Sequence

import structlog

from .lifecycle import (
    ReferenceFn,
    SupplyFn,
    evaluate_live,
    reconcile_open_events,
    reconstruct_backfill,
)
from .models import DepegEvent, LiveEvaluation, PriceObservation, StabilityScore
from .peg_rates import derive_peg_rates
from .registry import AssetRegistry, TrackedAsset
from .scoring import compute_peg_score
from .store import InMemoryEventStore

logger = structlog.get_logger(__name__)


class DepegMonitor:
    """Runs live cycles and backfills against an event store."""

    def __init__(
        self,
        store: Optional[InMemoryEventStore] = None,
        registry: Optional[AssetRegistry] = None,
    ) -> None:
        self.store = store if store is not None else InMemoryEventStore()
        self.registry = registry if registry is not None else AssetRegistry()

        self._stats_lock = threading.Lock()
        self._cycle_count = 0
        self._last_cycle_at: Optional[int] = None
        self._stats: dict[str, Any] = {
            "cycles": 0,
            "evaluated": 0,
            "skipped": 0,
            "opened": 0,
            "closed": 0,
            "merged": 0,
            "backfills": 0,
        }

    # ── Live ───────────────────────────────────────────────────────────────────

    def run_live_cycle(
        self,
        observations: Iterable[PriceObservation],
        fallback_rates: Optional[Mapping[str, float]] = None,
        now: Optional[int] = None,
    ) -> list[LiveEvaluation]:
        """Evaluate one snapshot for every tracked asset present in it."""
        observations = list(observations)
        with self._stats_lock:
            self._cycle_count += 1
            cycle = self._cycle_count
            self._stats["cycles"] = cycle

        rates = derive_peg_rates(
            observations,
            gold_ounces=self.registry.gold_ounces(),
            fallback_rates=fallback_rates,
        )
        by_asset = {o.asset_id: o for o in observations}

        results = []
        for asset in self.registry.detectable():
            observation = by_asset.get(asset.id)
            if observation is None:
                continue
            results.append(self._evaluate_asset(asset, observation, rates, now))

        with self._stats_lock:
            self._last_cycle_at = now if now is not None else int(time.time())
        logger.info(
            "live_cycle_complete",
            cycle=cycle,
            assets=len(results),
            rates=rates,
        )
        return results

    def _evaluate_asset(
        self,
        asset: TrackedAsset,
        observation: PriceObservation,
        rates: Mapping[str, float],
        now: Optional[int],
    ) -> LiveEvaluation:
        with self.store.asset_lock(asset.id):
            merge = reconcile_open_events(self.store.open_events(asset.id))
            if merge.absorbed:
                logger.warning(
                    "duplicate_open_events_merged",
                    asset_id=asset.id,
                    keeper_id=merge.keeper.id,
                    absorbed_ids=[e.id for e in merge.absorbed],
                )
                self.store.delete(asset.id, [e.id for e in merge.absorbed])
                self.store.upsert(merge.keeper)
                self._bump("merged", len(merge.absorbed))

            result = evaluate_live(
                observation,
                rates,
                merge.keeper,
                symbol=asset.symbol,
                gold_ounces=asset.gold_ounces,
                now=now,
            )
            if result.skipped:
                self._bump("skipped", 1)
                return result
            self._bump("evaluated", 1)

            for closed in result.closures:
                self.store.upsert(closed)
                self._bump("closed", 1)
                logger.info(
                    "depeg_closed",
                    asset_id=asset.id,
                    symbol=asset.symbol,
                    peak_bps=closed.peak_deviation_bps,
                    duration_s=closed.ended_at - closed.started_at,
                )

            stored = [self.store.upsert(e) for e in result.upserts]
            for event in stored:
                if merge.keeper is None or event.id != merge.keeper.id:
                    self._bump("opened", 1)
                    logger.info(
                        "depeg_opened",
                        asset_id=asset.id,
                        symbol=asset.symbol,
                        direction=event.direction.value,
                        bps=event.peak_deviation_bps,
                    )
            result.upserts = stored
            return result

    # ── Backfill ───────────────────────────────────────────────────────────────

    def run_backfill(
        self,
        asset_id: str,
        series: Sequence[tuple[int, float]],
        reference_fn: ReferenceFn,
        supply_fn: SupplyFn,
        now: Optional[int] = None,
    ) -> list[DepegEvent]:
        """Rebuild and atomically replace one asset's events.

        Unknown and NAV assets are left untouched.
        """
        asset = self.registry.get(asset_id)
        if asset is None or asset.nav_token:
            logger.info("backfill_skipped", asset_id=asset_id, known=asset is not None)
            return []

        with self.store.asset_lock(asset_id):
            events = reconstruct_backfill(asset, series, reference_fn, supply_fn, now=now)
            stored = self.store.replace_all(asset_id, events)

        self._bump("backfills", 1)
        logger.info(
            "backfill_replaced",
            asset_id=asset_id,
            symbol=asset.symbol,
            points=len(series),
            events=len(stored),
        )
        return stored

    # ── Scoring ────────────────────────────────────────────────────────────────

    def score(
        self,
        asset_id: str,
        window_start: Optional[int] = None,
        now: Optional[int] = None,
    ) -> StabilityScore:
        return compute_peg_score(
            self.store.events_for(asset_id), window_start, now, asset_id=asset_id
        )

    def _bump(self, key: str, amount: int) -> None:
        with self._stats_lock:
            self._stats[key] += amount

    def get_stats(self) -> dict[str, Any]:
        """Get monitor statistics."""
        with self._stats_lock:
            return {
                **self._stats,
                "last_cycle_at": self._last_cycle_at,
            }
