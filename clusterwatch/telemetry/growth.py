"""Growth predictor — linear trend over a lookback window, time to exhaustion.

Stateless: every projection is re-derived from the two rows bounding the
window plus the caller's remaining capacity.  A 7-day window is the default
because short windows are dominated by write bursts.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

from clusterwatch.core.config import CapacityConfig
from clusterwatch.core.types import CapacityStatus, GrowthSample, StitchedRow
from clusterwatch.telemetry.stitcher import latest_value

_SECS_PER_DAY = 86400.0


def classify_exhaustion(
    days_until_exhaustion: float,
    config: CapacityConfig | None = None,
) -> CapacityStatus:
    """Map a projected time-to-exhaustion onto a capacity status."""
    cfg = config or CapacityConfig()
    if days_until_exhaustion < cfg.critical_days:
        return CapacityStatus.CRITICAL
    if days_until_exhaustion < cfg.warning_days:
        return CapacityStatus.WARNING
    return CapacityStatus.GOOD


def _bounding_rows(
    rows: Sequence[StitchedRow],
    field: str,
    lookback_days: float,
) -> tuple[StitchedRow, StitchedRow] | None:
    carrying = [r for r in rows if field in r.values]
    if len(carrying) < 2:
        return None
    end = carrying[-1]
    window_start = end.time - timedelta(days=lookback_days)
    for row in carrying:
        if row.time >= window_start:
            return row, end
    return None


def predict_growth(
    rows: Sequence[StitchedRow],
    field: str,
    remaining_capacity: float,
    config: CapacityConfig | None = None,
) -> GrowthSample | None:
    """Fit a linear daily rate to *field* and project time to exhaustion.

    Args:
        rows: Ascending stitched rows.
        field: Column holding the growing quantity (e.g. data size in MB).
        remaining_capacity: Headroom left, in the same unit as *field*.
        config: Lookback window and thresholds. Defaults to 7/30/90 days.

    Returns:
        A GrowthSample, or None when there are not two distinct bounding
        rows in the window.  Non-positive growth yields status ``stable``
        with no projection rather than an error.
    """
    cfg = config or CapacityConfig()
    if cfg.lookback_days <= 0:
        return None

    bounds = _bounding_rows(rows, field, cfg.lookback_days)
    if bounds is None:
        return None
    start, end = bounds

    window_days = (end.time - start.time).total_seconds() / _SECS_PER_DAY
    if window_days <= 0:
        return None

    start_value = start.values[field]
    end_value = end.values[field]
    daily_rate = (end_value - start_value) / window_days

    if daily_rate <= 0:
        return GrowthSample(
            window_days=window_days,
            start_value=start_value,
            end_value=end_value,
            daily_rate=daily_rate,
        )

    days = max(remaining_capacity, 0.0) / daily_rate
    return GrowthSample(
        window_days=window_days,
        start_value=start_value,
        end_value=end_value,
        daily_rate=daily_rate,
        projected_exhaustion_days=days,
        status=classify_exhaustion(days, cfg),
    )


def disk_remaining(rows: Sequence[StitchedRow], free_field: str = "free_disk") -> float | None:
    """Latest free-disk reading, used as the remaining capacity for disk growth."""
    return latest_value(rows, free_field)


def disk_usage_pct(
    rows: Sequence[StitchedRow],
    free_field: str = "free_disk",
    total_field: str = "total_disk",
) -> float | None:
    """Used-disk percentage from the latest free/total readings."""
    free = latest_value(rows, free_field)
    total = latest_value(rows, total_field)
    if free is None or not total:
        return None
    return (total - free) / total * 100.0
