"""
Peg Reference Deriver — turns one market snapshot into a reference-rate table.

For each peg type the reference is the median price of the assets pegged to
it (supply >= $1M). USD is fixed at exactly 1.0. Thin groups are validated
against a fallback rate so that a single illiquid or depegged asset cannot
define its own currency's reference.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Callable, Iterable, Mapping, Optional

import numpy as np
import structlog

from .config import settings
from .models import PegReferenceTable, PriceObservation

logger = structlog.get_logger(__name__)

USD_PEG = "USD"
COMMODITY_PEGS = frozenset({"GOLD"})

# USD per unit; used when a thin peg group disagrees with the market
DEFAULT_FALLBACK_RATES: dict[str, float] = {
    "EUR": 1.08,
    "GBP": 1.27,
    "CHF": 1.13,
    "BRL": 0.18,
    "RUB": 0.011,
    "GOLD": 2650.0,
}


def is_valid_number(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


def _normalized_price(
    obs: PriceObservation,
    gold_ounces: Mapping[str, float],
) -> float:
    """Price per canonical unit (one troy ounce for commodity pegs)."""
    if obs.peg_type in COMMODITY_PEGS:
        ounces = gold_ounces.get(obs.asset_id)
        if is_valid_number(ounces):
            return obs.price / ounces
    return obs.price


def derive_peg_rates(
    observations: Iterable[PriceObservation],
    gold_ounces: Optional[Mapping[str, float]] = None,
    fallback_rates: Optional[Mapping[str, float]] = None,
) -> PegReferenceTable:
    """Build the peg type -> USD rate table for one cycle.

    Never raises; with no usable data the result is ``{"USD": 1.0}``.
    """
    gold_ounces = gold_ounces or {}
    fallbacks = {**DEFAULT_FALLBACK_RATES, **(fallback_rates or {})}

    groups: dict[str, list[float]] = defaultdict(list)
    for obs in observations:
        if not obs.peg_type or not is_valid_number(obs.price):
            continue
        if not math.isfinite(obs.supply) or obs.supply < settings.min_supply_usd:
            continue
        groups[obs.peg_type].append(_normalized_price(obs, gold_ounces))

    rates: PegReferenceTable = {USD_PEG: 1.0}
    for peg, prices in groups.items():
        if peg == USD_PEG:
            continue

        median = float(np.median(prices))

        fallback = fallbacks.get(peg)
        if len(prices) < settings.thin_group_size and is_valid_number(fallback):
            deviation = abs(median - fallback) / fallback
            if deviation > settings.max_fallback_deviation:
                logger.debug(
                    "thin_peg_group_fallback",
                    peg_type=peg,
                    group_size=len(prices),
                    median=median,
                    fallback=fallback,
                    deviation=round(deviation, 4),
                )
                median = fallback

        if is_valid_number(median):
            rates[peg] = median

    return rates


def get_peg_reference(
    peg_type: Optional[str],
    rates: Mapping[str, float],
    gold_ounces: Optional[float] = None,
) -> float:
    """Expected USD price of one token of an asset with the given peg type."""
    if not peg_type:
        return 1.0
    rate = rates.get(peg_type, 1.0)
    if peg_type in COMMODITY_PEGS and is_valid_number(gold_ounces):
        return rate * gold_ounces
    return rate


def historical_reference_fn(
    peg_type: str,
    rate_at: Optional[Callable[[str, int], Optional[float]]] = None,
    gold_ounces: Optional[float] = None,
    current_rates: Optional[Mapping[str, float]] = None,
) -> Callable[[int], float]:
    """Per-timestamp reference price for one asset.

    ``rate_at(peg_type, ts)`` supplies historical FX/commodity rates; when it
    has nothing for a timestamp the current rate is used instead. USD is
    always 1.0.
    """
    current = current_rates or {USD_PEG: 1.0}

    def reference(ts: int) -> float:
        rate = None
        if peg_type != USD_PEG and rate_at is not None:
            rate = rate_at(peg_type, ts)
        if not is_valid_number(rate):
            return get_peg_reference(peg_type, current, gold_ounces)
        return get_peg_reference(peg_type, {peg_type: rate}, gold_ounces)

    return reference
