"""Domain models for pegwatch."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ── Enums ──────────────────────────────────────────────────────────────────────

class Direction(str, Enum):
    ABOVE = "above"
    BELOW = "below"

    @classmethod
    def from_bps(cls, bps: int) -> "Direction":
        return cls.ABOVE if bps >= 0 else cls.BELOW


class EventSource(str, Enum):
    LIVE = "live"
    BACKFILL = "backfill"


# ── Market Data ────────────────────────────────────────────────────────────────

class PriceObservation(BaseModel):
    asset_id: str
    peg_type: str
    price: Optional[float] = Field(default=None, description="USD price, may be missing")
    supply: float = Field(default=0.0, description="Circulating supply, USD-equivalent")
    timestamp: int = Field(description="Unix seconds")


# peg type -> USD value of one unit of the peg currency/commodity
PegReferenceTable = dict[str, float]


# ── Depeg Events ───────────────────────────────────────────────────────────────

class DepegEvent(BaseModel):
    id: Optional[int] = None
    asset_id: str
    symbol: str = ""
    peg_type: str
    direction: Direction
    peak_deviation_bps: int = Field(description="Signed bps from reference at the peak")
    started_at: int
    ended_at: Optional[int] = Field(default=None, description="None while the event is open")
    start_price: float
    peak_price: float
    recovery_price: Optional[float] = None
    peg_reference: float = Field(description="Reference rate when the event opened")
    source: EventSource = EventSource.LIVE

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def end_or(self, now: int) -> int:
        return now if self.ended_at is None else self.ended_at


class LiveEvaluation(BaseModel):
    """Outcome of one live tick for one asset."""
    asset_id: str
    deviation_bps: Optional[int] = None
    skipped: bool = False
    upserts: list[DepegEvent] = Field(default_factory=list)   # still open after the tick
    closures: list[DepegEvent] = Field(default_factory=list)  # closed during the tick

    @property
    def open_event(self) -> Optional[DepegEvent]:
        return self.upserts[-1] if self.upserts else None


class OpenEventMerge(BaseModel):
    """Duplicate open events collapsed into a single keeper."""
    keeper: Optional[DepegEvent] = None
    absorbed: list[DepegEvent] = Field(default_factory=list)


# ── Scores ─────────────────────────────────────────────────────────────────────

class StabilityScore(BaseModel):
    asset_id: str = ""
    peg_score: Optional[int] = Field(default=None, ge=0, le=100, description="None if history < 30 days")
    peg_pct: float = Field(ge=0, le=100, description="Time-at-peg percentage")
    severity_score: float = Field(ge=0, le=100)
    event_count: int = 0
    worst_deviation_bps: Optional[int] = None
    active_depeg: bool = False
    last_event_at: Optional[int] = None
    tracking_span_days: int = 0


class PegStabilityMetrics(BaseModel):
    peg_pct: float
    tracking_span: str = Field(description='Human readable span, e.g. "3y 8mo"')
    limited: bool = Field(description="Tracking history shorter than 30 days")
    event_count: int
    worst_deviation_bps: Optional[int] = None
    current_streak_days: Optional[int] = Field(
        default=None,
        description="Days since the last event closed; None while depegged"
    )
    depegged_now: bool = False
