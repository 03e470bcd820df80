"""
Stability Scorer — compresses an asset's depeg history into one 0-100 score.

Composite:
  peg_score = 0.5 * peg_pct + 0.5 * severity_score - active_depeg_penalty

  peg_pct         share of the tracking window with no depeg open, using a
                  union of event intervals so overlaps are counted once
  severity_score  100 - Σ sqrt(|peak|/100) * (min(days, 90)/30) / (1 + years ago)
  active penalty  min(50, |peak|/200) while an event is still open

Fewer than 30 days of history yields ``peg_score = None`` ("unknown" rather
than "unstable").
"""

from __future__ import annotations

import math
import time
from typing import Iterable, Optional, Sequence

from .config import settings
from .models import DepegEvent, PegStabilityMetrics, StabilityScore

SECONDS_PER_DAY = 86400
SECONDS_PER_YEAR = 365.25 * SECONDS_PER_DAY
DAYS_PER_MONTH = 30.44


def merge_intervals(intervals: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    """Union of ``[start, end]`` intervals (sweep line over sorted starts).

    Touching intervals (next start == current end) are merged; empty or
    inverted intervals are dropped.
    """
    merged: list[tuple[int, int]] = []
    for start, end in sorted(i for i in intervals if i[1] > i[0]):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def depeg_seconds(events: Iterable[DepegEvent], window_start: int, now: int) -> int:
    """Seconds within ``[window_start, now]`` covered by at least one event."""
    clamped = (
        (max(e.started_at, window_start), min(e.end_or(now), now))
        for e in events
    )
    return sum(end - start for start, end in merge_intervals(clamped))


def peg_pct(events: Sequence[DepegEvent], window_start: int, now: int) -> float:
    span = max(now - window_start, 1)
    return max(0.0, (1 - depeg_seconds(events, window_start, now) / span) * 100)


def worst_deviation(events: Iterable[DepegEvent]) -> Optional[int]:
    """Signed peak with the largest magnitude; the first one seen wins ties."""
    worst: Optional[int] = None
    for e in events:
        if worst is None or abs(e.peak_deviation_bps) > abs(worst):
            worst = e.peak_deviation_bps
    return worst


def _event_penalty(event: DepegEvent, now: int) -> float:
    peak_bps = abs(event.peak_deviation_bps)
    duration_days = max(0.0, (event.end_or(now) - event.started_at) / SECONDS_PER_DAY)
    duration_days = min(duration_days, settings.severity_cap_days)
    years_ago = max(0.0, (now - event.started_at) / SECONDS_PER_YEAR)
    return math.sqrt(peak_bps / 100) * (duration_days / 30) * (1 / (1 + years_ago))


def _active_penalty(events: Iterable[DepegEvent]) -> float:
    open_peaks = [abs(e.peak_deviation_bps) for e in events if e.is_open]
    if not open_peaks:
        return 0.0
    return min(settings.active_penalty_cap, max(open_peaks) / settings.active_penalty_divisor_bps)


def compute_peg_score(
    events: Sequence[DepegEvent],
    window_start: Optional[int],
    now: Optional[int] = None,
    *,
    asset_id: str = "",
) -> StabilityScore:
    """Score one asset from its full event history.

    ``window_start`` is the start of tracking (unix seconds); when unknown
    the earliest event start is used.
    """
    now = int(time.time()) if now is None else now

    start = window_start
    if start is None and events:
        start = min(e.started_at for e in events)

    if start is None:
        return StabilityScore(
            asset_id=asset_id,
            peg_score=None,
            peg_pct=100.0,
            severity_score=100.0,
        )

    span_days = math.floor((now - start) / SECONDS_PER_DAY)
    insufficient = span_days < settings.min_tracking_days

    time_score = peg_pct(events, start, now)
    severity = max(0.0, 100 - sum(_event_penalty(e, now) for e in events))
    penalty = _active_penalty(events)

    raw = 0.5 * time_score + 0.5 * severity - penalty
    score = None if insufficient else int(round(min(100.0, max(0.0, raw))))

    return StabilityScore(
        asset_id=asset_id,
        peg_score=score,
        peg_pct=time_score,
        severity_score=severity,
        event_count=len(events),
        worst_deviation_bps=worst_deviation(events),
        active_depeg=any(e.is_open for e in events),
        last_event_at=max((e.started_at for e in events), default=None),
        tracking_span_days=max(span_days, 0),
    )


# ── Display metrics ────────────────────────────────────────────────────────────

def format_tracking_span(seconds: float) -> str:
    days = math.floor(seconds / SECONDS_PER_DAY)
    if days < 30:
        return f"{days}d"
    months = math.floor(days / DAYS_PER_MONTH)
    if months < 12:
        return f"{months}mo"
    years, rem = divmod(months, 12)
    return f"{years}y {rem}mo" if rem else f"{years}y"


def compute_peg_stability(
    events: Sequence[DepegEvent],
    earliest: Optional[int],
    now: Optional[int] = None,
) -> Optional[PegStabilityMetrics]:
    """Lightweight view for detail pages, without decay-weighted severity."""
    now = int(time.time()) if now is None else now

    start = earliest
    if start is None and events:
        start = min(e.started_at for e in events)
    if start is None or now - start <= 0:
        return None

    depegged_now = any(e.is_open for e in events)
    streak = None
    closed_ends = [e.ended_at for e in events if e.ended_at is not None]
    if not depegged_now and closed_ends:
        streak = math.floor((now - max(closed_ends)) / SECONDS_PER_DAY)

    return PegStabilityMetrics(
        peg_pct=peg_pct(events, start, now),
        tracking_span=format_tracking_span(now - start),
        limited=now - start < settings.min_tracking_days * SECONDS_PER_DAY,
        event_count=len(events),
        worst_deviation_bps=worst_deviation(events),
        current_streak_days=streak,
        depegged_now=depegged_now,
    )
