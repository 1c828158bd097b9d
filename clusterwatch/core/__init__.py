"""Core module — config, types, logging."""

from clusterwatch.core.config import Settings, get_settings, load_settings, reset_settings
from clusterwatch.core.logging import setup_logging
from clusterwatch.core.types import (
    AlarmCounts,
    AlarmEvent,
    AlarmSeverity,
    BadgeLevel,
    CapacityAlert,
    CapacityStatus,
    FetchWarning,
    FitStatus,
    GrowthSample,
    Job,
    JobLogPayload,
    JobStatus,
    JobStatusChange,
    Sample,
    SeriesKey,
    StatusSource,
    StitchedRow,
    WorkingSetEstimate,
)

__all__ = [
    "AlarmCounts",
    "AlarmEvent",
    "AlarmSeverity",
    "BadgeLevel",
    "CapacityAlert",
    "CapacityStatus",
    "FetchWarning",
    "FitStatus",
    "GrowthSample",
    "Job",
    "JobLogPayload",
    "JobStatus",
    "JobStatusChange",
    "Sample",
    "SeriesKey",
    "Settings",
    "StatusSource",
    "StitchedRow",
    "WorkingSetEstimate",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
