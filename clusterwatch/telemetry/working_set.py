"""Working-set-vs-RAM fit classifier.

An explicit heuristic, not a model of the storage engine:

    working_set = index_size + data_size * active_fraction + connections * mb_per_conn

All constants live in :class:`WorkingSetConfig` with the dashboard's defaults
(0.25, 1 MB, 0.7 / 0.9).
"""

from __future__ import annotations

from clusterwatch.core.config import WorkingSetConfig
from clusterwatch.core.types import FitStatus, StitchedRow, WorkingSetEstimate


def estimate_working_set(
    index_size_mb: float,
    data_size_mb: float,
    connections: float,
    ram_mb: float,
    config: WorkingSetConfig | None = None,
) -> WorkingSetEstimate | None:
    """Estimate the working set and classify how it fits into *ram_mb*.

    Returns None when RAM is unknown (zero or negative).
    """
    cfg = config or WorkingSetConfig()
    if ram_mb <= 0:
        return None

    working_set = (
        index_size_mb
        + data_size_mb * cfg.active_data_fraction
        + connections * cfg.mb_per_connection
    )

    if working_set <= ram_mb * cfg.excellent_ratio:
        status = FitStatus.EXCELLENT
    elif working_set <= ram_mb * cfg.tight_ratio:
        status = FitStatus.TIGHT
    else:
        status = FitStatus.TOO_LARGE

    return WorkingSetEstimate(
        working_set_mb=working_set,
        ram_mb=ram_mb,
        ratio=working_set / ram_mb,
        status=status,
    )


def estimate_from_row(
    row: StitchedRow,
    ram_mb: float,
    config: WorkingSetConfig | None = None,
) -> WorkingSetEstimate | None:
    """Estimate from a stitched row carrying index/data size and connections.

    Expects ``index_size_mb``, ``data_size_mb`` and ``connections`` columns;
    a missing column counts as zero.
    """
    values = row.values
    return estimate_working_set(
        index_size_mb=values.get("index_size_mb", 0.0),
        data_size_mb=values.get("data_size_mb", 0.0),
        connections=values.get("connections", 0.0),
        ram_mb=ram_mb,
        config=config,
    )
