"""Cross-asset peg summary: current deviation plus score for every tracked asset."""

from __future__ import annotations

import time
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
from pydantic import BaseModel, Field

from .config import settings
from .lifecycle import deviation_bps
from .models import DepegEvent, PriceObservation
from .peg_rates import derive_peg_rates, get_peg_reference, is_valid_number
from .registry import AssetRegistry
from .scoring import SECONDS_PER_YEAR, compute_peg_score


class CoinPegRow(BaseModel):
    id: str
    symbol: str
    name: str
    peg_type: str
    current_deviation_bps: Optional[int] = None
    peg_score: Optional[int] = None
    peg_pct: float
    severity_score: float
    event_count: int
    worst_deviation_bps: Optional[int] = None
    active_depeg: bool
    last_event_at: Optional[int] = None
    tracking_span_days: int


class WorstCurrent(BaseModel):
    id: str
    symbol: str
    bps: int


class PegSummary(BaseModel):
    coins: list[CoinPegRow] = Field(default_factory=list)
    active_depeg_count: int = 0
    median_deviation_bps: int = 0
    worst_current: Optional[WorstCurrent] = None
    coins_at_peg: int = 0
    total_tracked: int = 0


def _current_bps(
    observation: Optional[PriceObservation],
    rates: Mapping[str, float],
    gold_ounces: Optional[float],
) -> Optional[int]:
    if observation is None or not is_valid_number(observation.price):
        return None
    if observation.supply < settings.min_supply_usd:
        return None
    reference = get_peg_reference(observation.peg_type, rates, gold_ounces)
    if not is_valid_number(reference):
        return None
    return deviation_bps(observation.price, reference)


def build_peg_summary(
    registry: AssetRegistry,
    observations: Iterable[PriceObservation],
    events: Mapping[str, Sequence[DepegEvent]],
    fallback_rates: Optional[Mapping[str, float]] = None,
    now: Optional[int] = None,
) -> PegSummary:
    """Per-asset peg rows and aggregate figures for the dashboard."""
    now = int(time.time()) if now is None else now
    observations = list(observations)
    by_asset = {o.asset_id: o for o in observations}
    rates = derive_peg_rates(observations, registry.gold_ounces(), fallback_rates)
    default_start = int(now - settings.default_tracking_years * SECONDS_PER_YEAR)

    summary = PegSummary()
    abs_bps: list[int] = []

    for asset in registry.detectable():
        asset_events = list(events.get(asset.id, ()))
        current = _current_bps(by_asset.get(asset.id), rates, asset.gold_ounces)

        tracking_start = min(
            [default_start] + [e.started_at for e in asset_events]
        )
        score = compute_peg_score(asset_events, tracking_start, now, asset_id=asset.id)

        summary.coins.append(CoinPegRow(
            id=asset.id,
            symbol=asset.symbol,
            name=asset.name,
            peg_type=asset.peg_type,
            current_deviation_bps=current,
            peg_score=score.peg_score,
            peg_pct=score.peg_pct,
            severity_score=score.severity_score,
            event_count=score.event_count,
            worst_deviation_bps=score.worst_deviation_bps,
            active_depeg=score.active_depeg,
            last_event_at=score.last_event_at,
            tracking_span_days=score.tracking_span_days,
        ))

        if score.active_depeg:
            summary.active_depeg_count += 1
        if current is not None:
            abs_bps.append(abs(current))
            if abs(current) < settings.depeg_threshold_bps:
                summary.coins_at_peg += 1
            if summary.worst_current is None or abs(current) > abs(summary.worst_current.bps):
                summary.worst_current = WorstCurrent(id=asset.id, symbol=asset.symbol, bps=current)

    summary.median_deviation_bps = int(round(float(np.median(abs_bps)))) if abs_bps else 0
    summary.total_tracked = len(summary.coins)
    return summary
