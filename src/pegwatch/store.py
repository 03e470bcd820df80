"""
Asset-keyed depeg event store.

In-memory implementation of the read-all / replace-all persistence contract
the lifecycle manager relies on. One asset's read → decide → write unit runs
under ``asset_lock(asset_id)``; different assets never contend.
"""

from __future__ import annotations

import itertools
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

import structlog

from .models import DepegEvent

logger = structlog.get_logger(__name__)


class EventStoreError(ValueError):
    """A write would break the store's per-asset invariants."""


class InMemoryEventStore:
    """Thread-safe event store keyed by asset id."""

    def __init__(self, events: Iterable[DepegEvent] = ()) -> None:
        self._events: dict[str, list[DepegEvent]] = defaultdict(list)
        self._ids = itertools.count(1)
        self._guard = threading.Lock()
        self._asset_locks: dict[str, threading.RLock] = {}
        for event in events:
            self._insert(event)

    # ── Locking ────────────────────────────────────────────────────────────────

    @contextmanager
    def asset_lock(self, asset_id: str) -> Iterator[None]:
        """Serialize read-modify-write on one asset's events."""
        with self._guard:
            lock = self._asset_locks.setdefault(asset_id, threading.RLock())
        with lock:
            yield

    # ── Reads ──────────────────────────────────────────────────────────────────

    def events_for(self, asset_id: str) -> list[DepegEvent]:
        with self._guard:
            return [e.model_copy() for e in self._events.get(asset_id, [])]

    def open_events(self, asset_id: str) -> list[DepegEvent]:
        return [e for e in self.events_for(asset_id) if e.is_open]

    def active_events(self) -> list[DepegEvent]:
        """Open events across all assets, newest first."""
        return [e for e in self.recent_events() if e.is_open]

    def recent_events(
        self,
        asset_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[DepegEvent]:
        """Events ordered by ``started_at`` descending, optionally for one asset."""
        with self._guard:
            if asset_id is not None:
                pool = list(self._events.get(asset_id, []))
            else:
                pool = [e for events in self._events.values() for e in events]
        pool.sort(key=lambda e: e.started_at, reverse=True)
        end = None if limit is None else offset + limit
        return [e.model_copy() for e in pool[offset:end]]

    def all_events(self) -> dict[str, list[DepegEvent]]:
        with self._guard:
            return {
                asset_id: [e.model_copy() for e in events]
                for asset_id, events in self._events.items()
                if events
            }

    # ── Writes ─────────────────────────────────────────────────────────────────

    def _insert(self, event: DepegEvent) -> DepegEvent:
        stored = event.model_copy()
        if stored.id is None:
            stored.id = next(self._ids)
        self._events[stored.asset_id].append(stored)
        return stored.model_copy()

    def upsert(self, event: DepegEvent) -> DepegEvent:
        """Insert a new event or overwrite the stored event with the same id."""
        with self._guard:
            if event.id is not None:
                bucket = self._events[event.asset_id]
                for i, existing in enumerate(bucket):
                    if existing.id == event.id:
                        bucket[i] = event.model_copy()
                        return event.model_copy()
            return self._insert(event)

    def delete(self, asset_id: str, event_ids: Iterable[Optional[int]]) -> int:
        doomed = {i for i in event_ids if i is not None}
        with self._guard:
            bucket = self._events.get(asset_id, [])
            kept = [e for e in bucket if e.id not in doomed]
            removed = len(bucket) - len(kept)
            self._events[asset_id] = kept
        return removed

    def replace_all(self, asset_id: str, events: Iterable[DepegEvent]) -> list[DepegEvent]:
        """Atomically swap an asset's whole event set.

        The replacement is validated before anything is touched; on error the
        previous events stay in place.
        """
        replacement = [e.model_copy() for e in events]
        foreign = [e for e in replacement if e.asset_id != asset_id]
        if foreign:
            raise EventStoreError(
                f"replacement for {asset_id} contains events of {foreign[0].asset_id}"
            )
        if sum(1 for e in replacement if e.is_open) > 1:
            raise EventStoreError(f"replacement for {asset_id} has more than one open event")

        with self._guard:
            for e in replacement:
                e.id = next(self._ids)
            previous = len(self._events.get(asset_id, []))
            self._events[asset_id] = replacement

        logger.debug("events_replaced", asset_id=asset_id, previous=previous, current=len(replacement))
        return [e.model_copy() for e in replacement]
