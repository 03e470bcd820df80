"""Demo: replay a short synthetic USDC depeg through the monitor and score it."""

import time

import structlog

from pegwatch.logging_config import configure_logging
from pegwatch.models import PriceObservation
from pegwatch.monitor import DepegMonitor

logger = structlog.get_logger(__name__)

DAY = 86400


def main() -> None:
    configure_logging()
    monitor = DepegMonitor()
    now = int(time.time())
    start = now - 90 * DAY

    # SVB-style dip: two days below peg, then recovery
    usdc_path = [1.0, 1.0, 0.97, 0.88, 0.99, 1.0] + [1.0] * 84
    for day, usdc in enumerate(usdc_path):
        ts = start + day * DAY
        monitor.run_live_cycle([
            PriceObservation(asset_id="1", peg_type="USD", price=1.0, supply=110e9, timestamp=ts),
            PriceObservation(asset_id="2", peg_type="USD", price=usdc, supply=32e9, timestamp=ts),
            PriceObservation(asset_id="50", peg_type="EUR", price=1.08, supply=90e6, timestamp=ts),
        ], now=ts)

    for asset_id in ("1", "2", "50"):
        out = monitor.score(asset_id, window_start=start, now=now)
        print({
            "asset": asset_id,
            "peg_score": out.peg_score,
            "peg_pct": round(out.peg_pct, 2),
            "events": out.event_count,
            "worst_bps": out.worst_deviation_bps,
        })
    logger.info("demo_complete", stats=monitor.get_stats())


if __name__ == "__main__":
    main()
