from pegwatch.lifecycle import evaluate_live, reconcile_open_events, reconstruct_backfill
from pegwatch.models import (
    DepegEvent,
    Direction,
    EventSource,
    LiveEvaluation,
    PegStabilityMetrics,
    PriceObservation,
    StabilityScore,
)
from pegwatch.monitor import DepegMonitor
from pegwatch.peg_rates import derive_peg_rates, get_peg_reference
from pegwatch.registry import AssetRegistry, TrackedAsset
from pegwatch.scoring import compute_peg_score, compute_peg_stability, merge_intervals
from pegwatch.store import EventStoreError, InMemoryEventStore

__all__ = [
    "AssetRegistry",
    "DepegEvent",
    "DepegMonitor",
    "Direction",
    "EventSource",
    "EventStoreError",
    "InMemoryEventStore",
    "LiveEvaluation",
    "PegStabilityMetrics",
    "PriceObservation",
    "StabilityScore",
    "TrackedAsset",
    "compute_peg_score",
    "compute_peg_stability",
    "derive_peg_rates",
    "evaluate_live",
    "get_peg_reference",
    "merge_intervals",
    "reconcile_open_events",
    "reconstruct_backfill",
]
