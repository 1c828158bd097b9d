"""SeriesMonitor — polls metric series into the cache and derives capacity.

One poller per watched series.  Each tick is a cache lookup first: a fresh
entry means the tick does no I/O; a miss fetches, stitches and replaces the
entry.  Failed fetches keep the last good rows visible and record a
stale-data warning for the series.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from functools import partial

import structlog

from clusterwatch.api.client import ClusterApiClient
from clusterwatch.core.config import CapacityConfig, PollingConfig, WorkingSetConfig
from clusterwatch.core.types import (
    CapacityAlert,
    FetchWarning,
    GrowthSample,
    SeriesKey,
    StitchedRow,
    WorkingSetEstimate,
)
from clusterwatch.monitor.dispatcher import AlertDispatcher
from clusterwatch.polling.poller import Poller
from clusterwatch.telemetry.cache import SeriesCache
from clusterwatch.telemetry.growth import predict_growth
from clusterwatch.telemetry.stitcher import EntityExtractor, stitch_samples
from clusterwatch.telemetry.working_set import estimate_from_row

logger = structlog.stdlib.get_logger()

# Remaining capacity, either fixed or derived from the series itself.
CapacitySource = float | Callable[[Sequence[StitchedRow]], float | None]


@dataclass(frozen=True)
class SeriesSpec:
    """Where a SeriesKey's data comes from.

    ``system``/``category`` form the Telemetry API path, e.g. ``mongodb`` and
    ``system/cpu``; ``entity_tag`` qualifies columns per replica member or
    collection.
    """

    key: SeriesKey
    system: str
    category: str
    agent_id: str
    entity_tag: str | EntityExtractor | None = None


@dataclass(frozen=True)
class _Watch:
    spec: SeriesSpec
    interval_ms: int
    owner: str | None


def series_poller_key(key: SeriesKey) -> str:
    return f"series.{key}"


class SeriesMonitor:
    """Owns the watched series, their latest rows and capacity projections.

    Usage::

        monitor = SeriesMonitor(client, poller, cache, dispatcher)
        spec = SeriesSpec(SeriesKey(entity="node1", dataset="system-disk", range="7d"),
                          "mongodb", "system/disk", "agent_node1")
        monitor.watch(spec, owner="node-detail")
        await monitor.watch_capacity(spec.key, "used_disk", disk_remaining)
        ...
        monitor.latest(spec.key)
        monitor.capacity(spec.key, "used_disk")
    """

    def __init__(
        self,
        client: ClusterApiClient,
        poller: Poller,
        cache: SeriesCache,
        dispatcher: AlertDispatcher | None = None,
        polling_config: PollingConfig | None = None,
        capacity_config: CapacityConfig | None = None,
        working_set_config: WorkingSetConfig | None = None,
    ) -> None:
        self._client = client
        self._poller = poller
        self._cache = cache
        self._dispatcher = dispatcher
        self._polling_cfg = polling_config or PollingConfig()
        self._capacity_cfg = capacity_config or CapacityConfig()
        self._working_set_cfg = working_set_config or WorkingSetConfig()

        self._watches: dict[SeriesKey, _Watch] = {}
        self._latest: dict[SeriesKey, tuple[StitchedRow, ...]] = {}
        self._updated_at: dict[SeriesKey, float] = {}
        self._warnings: dict[SeriesKey, FetchWarning] = {}
        self._capacity_sources: dict[tuple[SeriesKey, str], CapacitySource] = {}
        self._capacity: dict[tuple[SeriesKey, str], GrowthSample] = {}

    # ── Read model ──────────────────────────────────────────────

    @property
    def watched(self) -> list[SeriesKey]:
        return list(self._watches)

    def latest(self, key: SeriesKey) -> tuple[StitchedRow, ...]:
        """Last successfully fetched rows, kept even when the cache has expired."""
        return self._latest.get(key, ())

    def updated_at(self, key: SeriesKey) -> float | None:
        return self._updated_at.get(key)

    def warning(self, key: SeriesKey) -> FetchWarning | None:
        """Stale-data warning for *key*; cleared by the next good fetch."""
        return self._warnings.get(key)

    def capacity(self, key: SeriesKey, field: str) -> GrowthSample | None:
        return self._capacity.get((key, field))

    def capacities(self) -> dict[tuple[SeriesKey, str], GrowthSample]:
        return dict(self._capacity)

    def working_set(self, key: SeriesKey, ram_mb: float) -> WorkingSetEstimate | None:
        rows = self._latest.get(key)
        if not rows:
            return None
        return estimate_from_row(rows[-1], ram_mb, self._working_set_cfg)

    # ── Watches ─────────────────────────────────────────────────

    def watch(
        self,
        spec: SeriesSpec,
        owner: str | None = None,
        interval_ms: int | None = None,
    ) -> str:
        """Start polling *spec*; the first tick fires immediately."""
        watch = _Watch(
            spec=spec,
            interval_ms=interval_ms or self._polling_cfg.metrics_interval_ms,
            owner=owner,
        )
        self._watches[spec.key] = watch
        poller_key = series_poller_key(spec.key)
        self._poller.start(
            poller_key,
            watch.interval_ms,
            partial(self.fetch, spec),
            on_result=partial(self._apply, spec.key),
            on_error=partial(self._record_failure, spec.key),
            initial_delay_ms=0,
            owner=owner,
        )
        return poller_key

    def unwatch(self, key: SeriesKey) -> None:
        self._watches.pop(key, None)
        self._poller.stop(series_poller_key(key))

    def unwatch_owner(self, owner: str) -> list[SeriesKey]:
        """Drop every watch registered by *owner*; returns the dropped keys."""
        keys = [k for k, w in self._watches.items() if w.owner == owner]
        for key in keys:
            self.unwatch(key)
        return keys

    def set_range(self, key: SeriesKey, new_range: str) -> SeriesKey:
        """Move a watched series to a new time range.

        The whole cache is invalidated: a range string says nothing about
        which window cached rows cover, so nothing cached may be reused.
        """
        watch = self._watches.get(key)
        if watch is None:
            raise KeyError(f"series {key} is not watched")

        new_key = key.model_copy(update={"range": new_range})
        self.unwatch(key)
        self._cache.invalidate_all()

        sources = {
            field: src
            for (k, field), src in self._capacity_sources.items()
            if k == key
        }
        for field in sources:
            self._capacity_sources.pop((key, field), None)
            self._capacity.pop((key, field), None)
            self._capacity_sources[(new_key, field)] = sources[field]

        self.watch(
            replace(watch.spec, key=new_key),
            owner=watch.owner,
            interval_ms=watch.interval_ms,
        )
        logger.info("series_range_changed", previous=str(key), current=str(new_key))
        return new_key

    async def watch_capacity(self, key: SeriesKey, field: str, remaining: CapacitySource) -> None:
        """Project *field* growth on every refresh of *key*.

        *remaining* is the headroom in *field*'s unit, or a function deriving
        it from the rows (e.g. latest free disk).  When rows are already held
        for *key* the projection runs at once and its alert is dispatched.
        """
        self._capacity_sources[(key, field)] = remaining
        rows = self._latest.get(key)
        if rows:
            await self._dispatch_capacity(key, field, rows)

    # ── Fetch path ──────────────────────────────────────────────

    async def fetch(self, spec: SeriesSpec) -> tuple[StitchedRow, ...] | None:
        """Fetch and stitch *spec* unless the cache is still fresh.

        Returns None on a cache hit (nothing to apply).
        """
        if self._cache.get(spec.key) is not None:
            return None
        samples = await self._client.get_metrics(
            spec.system, spec.category, spec.agent_id, spec.key.range,
        )
        return tuple(stitch_samples(samples, spec.entity_tag))

    async def _apply(self, key: SeriesKey, rows: tuple[StitchedRow, ...] | None) -> None:
        if rows is None:
            return
        self._cache.put(key, rows)
        self._latest[key] = rows
        self._updated_at[key] = time.time()
        self._warnings.pop(key, None)
        logger.debug("series_refreshed", key=str(key), rows=len(rows))

        for (k, field) in list(self._capacity_sources):
            if k == key:
                await self._dispatch_capacity(key, field, rows)

    async def _dispatch_capacity(
        self, key: SeriesKey, field: str, rows: Sequence[StitchedRow]
    ) -> None:
        alert = self._evaluate_capacity(key, field, rows)
        if alert is not None and self._dispatcher is not None:
            await self._dispatcher.on_capacity_alert(alert)

    async def _record_failure(self, key: SeriesKey, exc: Exception) -> None:
        warning = FetchWarning(
            source=str(key),
            message=f"Showing last known data for {key}: {exc}",
            error_type=type(exc).__name__,
        )
        self._warnings[key] = warning
        logger.warning(
            "series_fetch_failed",
            key=str(key),
            error=str(exc),
            kept_rows=len(self._latest.get(key, ())),
        )
        if self._dispatcher is not None:
            await self._dispatcher.on_fetch_warning(warning)

    def _evaluate_capacity(
        self,
        key: SeriesKey,
        field: str,
        rows: Sequence[StitchedRow],
    ) -> CapacityAlert | None:
        """Recompute one projection; returns an alert only when the status changes."""
        source = self._capacity_sources[(key, field)]
        remaining = source(rows) if callable(source) else source
        if remaining is None:
            return None

        growth = predict_growth(rows, field, remaining, self._capacity_cfg)
        if growth is None:
            return None

        previous = self._capacity.get((key, field))
        self._capacity[(key, field)] = growth
        if previous is not None and previous.status == growth.status:
            return None
        return CapacityAlert(key=key, field=field, growth=growth)
