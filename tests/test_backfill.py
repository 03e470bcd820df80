import random

from pegwatch import Direction, EventSource, PriceObservation, TrackedAsset
from pegwatch.lifecycle import evaluate_live, reconstruct_backfill

DAY = 86400
T0 = 1_700_000_000
USDC = TrackedAsset(id="2", symbol="USDC", peg_type="USD")


def series(prices, start=T0, step=DAY):
    return [(start + i * step, p) for i, p in enumerate(prices)]


def one(ts):
    return 1.0


def big_supply(ts):
    return 1e9


def test_single_excursion_is_closed_on_recovery():
    points = series([1.0, 0.97, 0.95, 0.98, 1.0, 1.0])
    events = reconstruct_backfill(USDC, points, one, big_supply, now=T0 + 10 * DAY)

    assert len(events) == 1
    e = events[0]
    assert e.source == EventSource.BACKFILL
    assert e.symbol == "USDC"
    assert e.started_at == T0 + DAY
    assert e.ended_at == T0 + 4 * DAY
    assert e.peak_deviation_bps == -500
    assert e.peak_price == 0.95
    assert e.start_price == 0.97
    assert e.recovery_price == 1.0


def test_reversal_produces_two_events():
    points = series([1.0, 0.97, 1.03, 1.0])
    events = reconstruct_backfill(USDC, points, one, big_supply, now=T0 + 10 * DAY)

    assert [e.direction for e in events] == [Direction.BELOW, Direction.ABOVE]
    assert events[0].ended_at == events[1].started_at == T0 + 2 * DAY
    assert events[0].recovery_price == 1.03


def test_recent_trailing_event_stays_open():
    points = series([1.0, 0.9, 0.85])
    now = T0 + 2 * DAY + 3 * DAY
    events = reconstruct_backfill(USDC, points, one, big_supply, now=now)

    assert len(events) == 1
    assert events[0].is_open
    assert events[0].peak_deviation_bps == -1500


def test_stale_trailing_event_is_closed_at_last_point():
    points = series([1.0, 0.9, 0.85])
    now = T0 + 2 * DAY + 8 * DAY
    events = reconstruct_backfill(USDC, points, one, big_supply, now=now)

    assert events[0].ended_at == T0 + 2 * DAY
    assert events[0].recovery_price == 0.85


def test_gated_tail_keeps_recent_event_open():
    points = series([0.9] * 21)

    def supply(ts):
        return 1e9 if ts <= T0 + DAY else 10.0

    events = reconstruct_backfill(USDC, points, one, supply, now=T0 + 21 * DAY)

    assert len(events) == 1
    assert events[0].is_open
    assert events[0].started_at == T0


def test_stale_check_uses_last_data_point_even_when_gated():
    points = series([0.9] * 21)

    def supply(ts):
        return 1e9 if ts <= T0 + DAY else 10.0

    now = T0 + 20 * DAY + 8 * DAY
    events = reconstruct_backfill(USDC, points, one, supply, now=now)

    assert events[0].ended_at == T0 + 20 * DAY
    assert events[0].recovery_price == 0.9


def test_low_supply_points_neither_open_nor_update():
    points = series([1.0, 0.5, 0.97, 0.6, 1.0])
    low_days = {T0 + DAY, T0 + 3 * DAY}

    def supply(ts):
        return 10.0 if ts in low_days else 1e9

    events = reconstruct_backfill(USDC, points, one, supply, now=T0 + 30 * DAY)

    assert len(events) == 1
    assert events[0].started_at == T0 + 2 * DAY
    assert events[0].peak_deviation_bps == -300


def test_unknown_supply_does_not_gate():
    points = series([1.0, 0.9, 1.0])
    events = reconstruct_backfill(USDC, points, one, lambda ts: None, now=T0 + 30 * DAY)
    assert len(events) == 1


def test_time_varying_reference():
    eurc = TrackedAsset(id="50", symbol="EURC", peg_type="EUR")
    fx = {T0: 1.10, T0 + DAY: 1.05, T0 + 2 * DAY: 1.05}
    # A flat 1.10 price only depegs once the EUR rate moves away from it
    points = series([1.10, 1.10, 1.05])
    events = reconstruct_backfill(eurc, points, fx.get, big_supply, now=T0 + 30 * DAY)

    assert len(events) == 1
    assert events[0].peak_deviation_bps == 476
    assert events[0].peg_reference == 1.05
    assert events[0].ended_at == T0 + 2 * DAY


def test_bad_prices_and_references_are_skipped():
    points = series([1.0, float("nan"), 0.0, 0.9, 1.0])
    events = reconstruct_backfill(USDC, points, one, big_supply, now=T0 + 30 * DAY)
    assert len(events) == 1
    assert events[0].started_at == T0 + 3 * DAY

    events = reconstruct_backfill(USDC, series([0.9, 0.9]), lambda ts: 0.0, big_supply, now=T0)
    assert events == []


def test_empty_series():
    assert reconstruct_backfill(USDC, [], one, big_supply, now=T0) == []


def test_live_replay_matches_backfill():
    rng = random.Random(7)
    prices = []
    for _ in range(400):
        shock = rng.random()
        if shock < 0.05:
            prices.append(round(rng.uniform(0.85, 0.98), 4))
        elif shock < 0.08:
            prices.append(round(rng.uniform(1.01, 1.05), 4))
        else:
            prices.append(round(rng.uniform(0.997, 1.003), 4))
    points = series(prices, step=3600)
    supplies = {ts: (1e9 if rng.random() > 0.1 else 5e5) for ts, _ in points}

    backfilled = reconstruct_backfill(
        USDC, points, one, supplies.get, now=points[-1][0]
    )

    live_closed = []
    current = None
    for ts, price in points:
        observation = PriceObservation(
            asset_id="2", peg_type="USD", price=price, supply=supplies[ts], timestamp=ts
        )
        result = evaluate_live(observation, {"USD": 1.0}, current, symbol="USDC")
        if result.skipped:
            continue
        live_closed.extend(result.closures)
        current = result.open_event

    backfill_closed = [e for e in backfilled if not e.is_open]
    assert len(live_closed) > 0
    assert len(backfill_closed) == len(live_closed)
    assert [e.peak_deviation_bps for e in backfill_closed] == [
        e.peak_deviation_bps for e in live_closed
    ]
    assert [(e.started_at, e.ended_at) for e in backfill_closed] == [
        (e.started_at, e.ended_at) for e in live_closed
    ]
