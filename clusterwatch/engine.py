"""TelemetryEngine — one session's worth of shared state and monitors.

The engine owns exactly one API client, series cache, poller registry,
deduplicator and status reconciler, and hands them to the monitors that
drive them.  Views talk to the engine through :meth:`TelemetryEngine.navigate`
and read its snapshots; nothing else holds engine state.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from types import TracebackType
from typing import Any

import structlog
from aiohttp import web

from clusterwatch.alarms.badge import AlarmBadge
from clusterwatch.alarms.dedup import EventDeduplicator
from clusterwatch.alarms.watcher import AlarmWatcher
from clusterwatch.api.client import ClusterApiClient
from clusterwatch.core.config import Settings, get_settings
from clusterwatch.jobs.monitor import JobMonitor
from clusterwatch.jobs.reconciler import StatusReconciler
from clusterwatch.monitor.factory import create_monitor_stack
from clusterwatch.monitor.web_dashboard import SnapshotFn, start_web_dashboard
from clusterwatch.polling.poller import Poller
from clusterwatch.telemetry.cache import SeriesCache
from clusterwatch.telemetry.monitor import SeriesMonitor, series_poller_key

logger = structlog.stdlib.get_logger()

LAYOUT_OWNER = "layout"


class TelemetryEngine:
    """Facade over the telemetry, alarm and job monitors.

    Usage::

        async with create_engine(settings) as engine:
            engine.navigate("/nodes/node1")
            engine.series.watch(spec, owner="/nodes/node1")
            ...
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: ClusterApiClient | None = None,
        cache_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        cfg = self._settings

        self.client = client or ClusterApiClient(cfg.api)
        self.cache = SeriesCache(ttl_secs=cfg.cache.ttl_secs, clock=cache_clock)
        self.poller = Poller()
        self.dedup = EventDeduplicator()
        self.reconciler = StatusReconciler()
        self.dispatcher, self.in_app = create_monitor_stack(cfg.alerts)
        self.reconciler.on_change(self.dispatcher.on_job_change)

        self.series = SeriesMonitor(
            self.client,
            self.poller,
            self.cache,
            dispatcher=self.dispatcher,
            polling_config=cfg.polling,
            capacity_config=cfg.capacity,
            working_set_config=cfg.working_set,
        )
        self.alarms = AlarmWatcher(
            self.client,
            self.poller,
            self.dedup,
            dispatcher=self.dispatcher,
            alarms_config=cfg.alarms,
            polling_config=cfg.polling,
            suppress=self.on_alarm_view,
        )
        self.badge = AlarmBadge(
            self.client,
            self.poller,
            alarms_config=cfg.alarms,
            polling_config=cfg.polling,
        )
        self.jobs = JobMonitor(
            self.client,
            self.poller,
            self.reconciler,
            dispatcher=self.dispatcher,
            polling_config=cfg.polling,
        )

        self._view: str | None = None
        self._running = False
        self._runner: web.AppRunner | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def running(self) -> bool:
        return self._running

    @property
    def view(self) -> str | None:
        return self._view

    # ── Views ───────────────────────────────────────────────────

    def on_alarm_view(self) -> bool:
        """True while a view that already lists alarms is active."""
        return self._view in self._settings.alarms.alarm_views

    def navigate(self, path: str) -> None:
        """Record the active view.

        Entering an alarm view clears the seen-alarm set so alarms still
        active when the user leaves can be surfaced again.  Series and
        pollers registered with the previous view path as their owner are
        stopped; session-wide owners such as the layout are never view paths.
        """
        previous = self._view
        self._view = path
        stopped: list[str] = []
        if previous is not None and previous != path:
            stopped = [series_poller_key(k) for k in self.series.unwatch_owner(previous)]
            stopped += self.poller.stop_owner(previous)
        if self.on_alarm_view():
            self.dedup.reset()
        logger.debug("view_changed", previous=previous, current=path, stopped=stopped)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self, watch_jobs: bool = False) -> None:
        """Connect and start the session-wide pollers."""
        if self._running:
            return
        if not self.client.connected:
            await self.client.connect()
        self.alarms.start(owner=LAYOUT_OWNER)
        self.badge.start(owner=LAYOUT_OWNER)
        if watch_jobs:
            self.jobs.start()
        self._running = True
        logger.info("engine_started", pollers=self.poller.active_keys)

    async def start_dashboard(self) -> web.AppRunner | None:
        """Serve the read models over HTTP if the dashboard is enabled."""
        cfg = self._settings.dashboard
        if not cfg.enabled or self._runner is not None:
            return self._runner
        self._runner = await start_web_dashboard(
            self.snapshots(),
            host=cfg.host,
            port=cfg.port,
            username=cfg.username or None,
            password=cfg.password.get_secret_value() or None,
        )
        logger.info("dashboard_started", host=cfg.host, port=cfg.port)
        return self._runner

    async def close(self) -> None:
        """Stop every poller and release HTTP resources."""
        await self.poller.close()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.dispatcher.close()
        await self.client.close()
        self._running = False
        logger.info("engine_stopped")

    async def __aenter__(self) -> TelemetryEngine:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Read models ─────────────────────────────────────────────

    def series_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {}
        for key in self.series.watched:
            warning = self.series.warning(key)
            snapshot[str(key)] = {
                "rows": list(self.series.latest(key)),
                "updated_at": self.series.updated_at(key),
                "warning": warning.message if warning is not None else None,
            }
        return snapshot

    def alarms_snapshot(self) -> dict[str, Any]:
        return {
            "counts": self.badge.counts,
            "surfaced": self.alarms.surfaced,
            "notifications": [m.summary() for m in self.in_app.recent],
        }

    def jobs_snapshot(self) -> dict[str, Any]:
        return {
            "jobs": self.jobs.jobs,
            "selected": self.jobs.selected_job,
            "statuses": {
                job_id: status.name.lower()
                for job_id, status in self.reconciler.statuses().items()
            },
        }

    def capacity_snapshot(self) -> list[dict[str, Any]]:
        return [
            {"key": str(key), "field": field, **growth.model_dump(mode="json")}
            for (key, field), growth in self.series.capacities().items()
        ]

    def snapshots(self) -> dict[str, SnapshotFn]:
        return {
            "series": self.series_snapshot,
            "alarms": self.alarms_snapshot,
            "jobs": self.jobs_snapshot,
            "capacity": self.capacity_snapshot,
        }


def create_engine(
    settings: Settings | None = None,
    client: ClusterApiClient | None = None,
) -> TelemetryEngine:
    """Build an engine from *settings* (the cached global settings by default)."""
    return TelemetryEngine(settings or get_settings(), client=client)
