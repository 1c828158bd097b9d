"""Telemetry — stitching, caching, growth projection, working-set fit."""

from clusterwatch.telemetry.cache import SeriesCache
from clusterwatch.telemetry.growth import (
    classify_exhaustion,
    disk_remaining,
    disk_usage_pct,
    predict_growth,
)
from clusterwatch.telemetry.monitor import SeriesMonitor, SeriesSpec, series_poller_key
from clusterwatch.telemetry.stitcher import (
    EntityExtractor,
    field_names,
    latest_value,
    sanitize_entity,
    stitch_samples,
)
from clusterwatch.telemetry.working_set import estimate_from_row, estimate_working_set

__all__ = [
    "EntityExtractor",
    "SeriesCache",
    "SeriesMonitor",
    "SeriesSpec",
    "classify_exhaustion",
    "disk_remaining",
    "disk_usage_pct",
    "estimate_from_row",
    "estimate_working_set",
    "field_names",
    "latest_value",
    "predict_growth",
    "sanitize_entity",
    "series_poller_key",
    "stitch_samples",
]
