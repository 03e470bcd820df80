"""
Depeg Event Lifecycle Manager.

Per-asset state machine (CLOSED / OPEN) driven by the absolute deviation from
the peg reference:

  |bps| >= threshold, nothing open      → open a new event
  |bps| >= threshold, open, same side   → raise the peak if worse
  |bps| >= threshold, open, other side  → close, then open in the new direction
  |bps| <  threshold, open              → close (recovery)

Live mode applies one observation per cycle to the asset's open event, which
is passed in and returned explicitly. Backfill mode walks a full price series
through the exact same transition step, so both paths produce the same
closed events for the same data.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable, Optional, Sequence

import structlog

from .config import settings
from .models import (
    DepegEvent,
    Direction,
    EventSource,
    LiveEvaluation,
    OpenEventMerge,
    PegReferenceTable,
    PriceObservation,
)
from .peg_rates import get_peg_reference, is_valid_number
from .registry import TrackedAsset

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86400

ReferenceFn = Callable[[int], float]
SupplyFn = Callable[[int], Optional[float]]


def deviation_bps(price: float, reference: float) -> int:
    """Signed deviation of ``price`` from ``reference`` in basis points."""
    return round(((price / reference) - 1) * 10000)


def _new_event(
    *,
    asset_id: str,
    symbol: str,
    peg_type: str,
    bps: int,
    price: float,
    reference: float,
    ts: int,
    source: EventSource,
) -> DepegEvent:
    return DepegEvent(
        asset_id=asset_id,
        symbol=symbol,
        peg_type=peg_type,
        direction=Direction.from_bps(bps),
        peak_deviation_bps=bps,
        started_at=ts,
        start_price=price,
        peak_price=price,
        peg_reference=reference,
        source=source,
    )


def _close(event: DepegEvent, ts: int, price: float) -> DepegEvent:
    return event.model_copy(update={"ended_at": ts, "recovery_price": price})


def _step(
    current: Optional[DepegEvent],
    bps: int,
    price: float,
    reference: float,
    ts: int,
    *,
    asset_id: str,
    symbol: str,
    peg_type: str,
    source: EventSource,
) -> tuple[Optional[DepegEvent], Optional[DepegEvent]]:
    """Apply one data point.

    Returns ``(open_event, closed_event)``: the event still open after the
    point (if any) and the event this point closed (if any).
    """
    if abs(bps) < settings.depeg_threshold_bps:
        if current is None:
            return None, None
        return None, _close(current, ts, price)

    if current is not None and current.direction == Direction.from_bps(bps):
        if abs(bps) > abs(current.peak_deviation_bps):
            current = current.model_copy(
                update={"peak_deviation_bps": bps, "peak_price": price}
            )
        return current, None

    closed = _close(current, ts, price) if current is not None else None
    opened = _new_event(
        asset_id=asset_id,
        symbol=symbol,
        peg_type=peg_type,
        bps=bps,
        price=price,
        reference=reference,
        ts=ts,
        source=source,
    )
    return opened, closed


# ── Live mode ──────────────────────────────────────────────────────────────────

def reconcile_open_events(events: Iterable[DepegEvent]) -> OpenEventMerge:
    """Collapse duplicate open events for one asset into a single keeper.

    The earliest open event survives and inherits the worst peak of the
    others on its own side of the peg; the rest are returned in
    ``absorbed`` for deletion.
    """
    open_events = sorted(
        (e for e in events if e.is_open),
        key=lambda e: (e.started_at, e.id if e.id is not None else float("inf")),
    )
    if not open_events:
        return OpenEventMerge()

    keeper = open_events[0].model_copy()
    absorbed = open_events[1:]
    for dup in absorbed:
        if dup.direction != keeper.direction:
            continue
        if abs(dup.peak_deviation_bps) > abs(keeper.peak_deviation_bps):
            keeper.peak_deviation_bps = dup.peak_deviation_bps
            keeper.peak_price = dup.peak_price

    return OpenEventMerge(keeper=keeper, absorbed=list(absorbed))


def evaluate_live(
    observation: PriceObservation,
    rates: PegReferenceTable,
    open_event: Optional[DepegEvent] = None,
    *,
    symbol: str = "",
    gold_ounces: Optional[float] = None,
    now: Optional[int] = None,
) -> LiveEvaluation:
    """Evaluate one cycle's observation for one asset.

    Observations with an unusable price or a supply below the floor are
    skipped: nothing is opened, updated or force-closed. ``open_event`` is
    not mutated.
    """
    result = LiveEvaluation(asset_id=observation.asset_id)

    reference = get_peg_reference(observation.peg_type, rates, gold_ounces)
    if (
        not is_valid_number(observation.price)
        or not is_valid_number(observation.supply)
        or observation.supply < settings.min_supply_usd
        or not is_valid_number(reference)
    ):
        result.skipped = True
        return result

    ts = observation.timestamp if now is None else now
    bps = deviation_bps(observation.price, reference)
    result.deviation_bps = bps

    still_open, closed = _step(
        open_event,
        bps,
        observation.price,
        reference,
        ts,
        asset_id=observation.asset_id,
        symbol=symbol or (open_event.symbol if open_event else ""),
        peg_type=observation.peg_type,
        source=EventSource.LIVE,
    )
    if closed is not None:
        result.closures.append(closed)
    if still_open is not None:
        result.upserts.append(still_open)
    return result


# ── Backfill mode ──────────────────────────────────────────────────────────────

def reconstruct_backfill(
    asset: TrackedAsset,
    series: Sequence[tuple[int, float]],
    reference_fn: ReferenceFn,
    supply_fn: SupplyFn,
    *,
    now: Optional[int] = None,
) -> list[DepegEvent]:
    """Rebuild an asset's complete event history from a price series.

    ``series`` is ascending ``(timestamp, price)``; ``reference_fn`` gives the
    asset's reference price at a timestamp and ``supply_fn`` the nearest known
    supply (``None`` when unknown, which does not gate the point). The result
    replaces every stored event of the asset.
    """
    now = int(time.time()) if now is None else now

    events: list[DepegEvent] = []
    current: Optional[DepegEvent] = None
    last_point: Optional[tuple[int, float]] = None
    skipped = 0

    for ts, price in series:
        if not is_valid_number(price):
            skipped += 1
            continue
        supply = supply_fn(ts)
        if supply is not None and supply < settings.min_supply_usd:
            skipped += 1
            continue
        reference = reference_fn(ts)
        if not is_valid_number(reference):
            skipped += 1
            continue

        current, closed = _step(
            current,
            deviation_bps(price, reference),
            price,
            reference,
            ts,
            asset_id=asset.id,
            symbol=asset.symbol,
            peg_type=asset.peg_type,
            source=EventSource.BACKFILL,
        )
        if closed is not None:
            events.append(closed)
        last_point = (ts, price)

    if current is not None and last_point is not None:
        # staleness is judged on the last data point, evaluated or not
        last_ts, last_price = series[-1]
        if not is_valid_number(last_price):
            last_price = last_point[1]
        if now - last_ts > settings.stale_backfill_days * SECONDS_PER_DAY:
            current = _close(current, last_ts, last_price)
        events.append(current)

    logger.debug(
        "backfill_reconstructed",
        asset_id=asset.id,
        points=len(series),
        skipped=skipped,
        events=len(events),
        open=bool(events and events[-1].is_open),
    )
    return events
