"""Tests for TelemetryEngine — wiring, view tracking, lifecycle, read models."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from clusterwatch.core.config import DashboardConfig, Settings
from clusterwatch.core.types import AlarmEvent, AlarmSeverity, Job, JobStatus, SeriesKey
from clusterwatch.engine import LAYOUT_OWNER, TelemetryEngine, create_engine
from clusterwatch.monitor.types import Severity
from clusterwatch.telemetry.monitor import SeriesSpec, series_poller_key

# ── Helpers ─────────────────────────────────────────────────────


def _mock_client(connected: bool = False) -> AsyncMock:
    client = AsyncMock()
    client.connected = connected
    client.get_recent_alarms.return_value = []
    client.get_alarm_count.return_value = 0
    client.list_jobs.return_value = []
    client.get_metrics.return_value = []
    return client


def _make_engine(client: AsyncMock | None = None, **overrides: object) -> TelemetryEngine:
    settings = Settings(**overrides)
    return TelemetryEngine(settings, client=client or _mock_client())


# ── Construction ────────────────────────────────────────────────


class TestConstruction:
    def test_create_engine_with_defaults(self) -> None:
        engine = create_engine(Settings(), client=_mock_client())
        assert engine.cache.ttl_secs == 15.0
        assert not engine.running
        assert engine.view is None

    def test_shared_components(self) -> None:
        engine = _make_engine()
        assert engine.series._poller is engine.poller
        assert engine.alarms._poller is engine.poller
        assert engine.jobs._poller is engine.poller
        assert engine.alarms._dedup is engine.dedup

    def test_cache_ttl_from_settings(self) -> None:
        engine = _make_engine(cache={"ttl_secs": 30})
        assert engine.cache.ttl_secs == 30.0


# ── Views ───────────────────────────────────────────────────────


class TestNavigation:
    def test_not_on_alarm_view_initially(self) -> None:
        engine = _make_engine()
        assert not engine.on_alarm_view()

    def test_alarm_view_resets_dedup(self) -> None:
        engine = _make_engine()
        engine.dedup.filter_new([AlarmEvent(id="e1", severity=AlarmSeverity.CRITICAL)])
        assert len(engine.dedup) == 1

        engine.navigate("/alarms")
        assert engine.on_alarm_view()
        assert len(engine.dedup) == 0

    def test_other_view_keeps_dedup(self) -> None:
        engine = _make_engine()
        engine.dedup.filter_new([AlarmEvent(id="e1", severity=AlarmSeverity.CRITICAL)])
        engine.navigate("/nodes/node1")
        assert not engine.on_alarm_view()
        assert engine.view == "/nodes/node1"
        assert len(engine.dedup) == 1

    def test_leaving_alarm_view_unsuppresses(self) -> None:
        engine = _make_engine()
        engine.navigate("/")
        assert engine.alarms._is_suppressed()
        engine.navigate("/jobs")
        assert not engine.alarms._is_suppressed()

    async def test_leaving_view_stops_its_series(self) -> None:
        engine = _make_engine()
        spec = SeriesSpec(
            key=SeriesKey(entity="node1", dataset="system-cpu", range="1h"),
            system="mongodb",
            category="system/cpu",
            agent_id="agent_node1",
        )
        engine.navigate("/nodes/node1")
        engine.series.watch(spec, owner="/nodes/node1")
        engine.alarms.start(owner=LAYOUT_OWNER)
        assert engine.poller.is_running(series_poller_key(spec.key))

        engine.navigate("/jobs")
        assert not engine.poller.is_running(series_poller_key(spec.key))
        assert engine.series.watched == []
        assert engine.poller.keys_for_owner(LAYOUT_OWNER) != []
        await engine.poller.close()

    async def test_renavigating_same_view_keeps_series(self) -> None:
        engine = _make_engine()
        spec = SeriesSpec(
            key=SeriesKey(entity="node1", dataset="system-cpu", range="1h"),
            system="mongodb",
            category="system/cpu",
            agent_id="agent_node1",
        )
        engine.navigate("/nodes/node1")
        engine.series.watch(spec, owner="/nodes/node1")
        engine.navigate("/nodes/node1")
        assert engine.poller.is_running(series_poller_key(spec.key))
        await engine.poller.close()


# ── Lifecycle ───────────────────────────────────────────────────


class TestLifecycle:
    async def test_start_connects_and_starts_layout_pollers(self) -> None:
        client = _mock_client()
        engine = _make_engine(client)
        await engine.start()
        client.connect.assert_awaited_once()
        assert engine.running
        assert len(engine.poller.keys_for_owner(LAYOUT_OWNER)) == 2
        await engine.close()

    async def test_start_skips_connect_when_connected(self) -> None:
        client = _mock_client(connected=True)
        engine = _make_engine(client)
        await engine.start()
        client.connect.assert_not_awaited()
        await engine.close()

    async def test_start_with_jobs(self) -> None:
        engine = _make_engine()
        await engine.start(watch_jobs=True)
        assert len(engine.poller.active_keys) == 3
        await engine.close()

    async def test_start_twice_is_noop(self) -> None:
        client = _mock_client()
        engine = _make_engine(client)
        await engine.start()
        await engine.start()
        assert client.connect.await_count == 1
        await engine.close()

    async def test_close_stops_everything(self) -> None:
        client = _mock_client()
        engine = _make_engine(client)
        await engine.start(watch_jobs=True)
        await engine.close()
        assert engine.poller.active_keys == []
        assert not engine.running
        client.close.assert_awaited_once()

    async def test_context_manager(self) -> None:
        client = _mock_client()
        async with _make_engine(client) as engine:
            assert engine.running
        client.close.assert_awaited_once()

    async def test_badge_polled_on_start(self) -> None:
        client = _mock_client()
        client.get_alarm_count.return_value = 3
        engine = _make_engine(client)
        await engine.start()
        await asyncio.sleep(0.01)
        assert engine.badge.counts.total == 3
        await engine.close()

    async def test_dashboard_disabled_by_default(self) -> None:
        engine = _make_engine()
        assert await engine.start_dashboard() is None

    async def test_dashboard_started_when_enabled(self) -> None:
        engine = _make_engine(dashboard=DashboardConfig(enabled=True, port=0))
        runner = await engine.start_dashboard()
        assert runner is not None
        assert await engine.start_dashboard() is runner
        await engine.close()


# ── Wiring ──────────────────────────────────────────────────────


class TestWiring:
    async def test_job_failure_reaches_in_app(self) -> None:
        engine = _make_engine()
        await engine.reconciler.observe_job_list([Job(job_id="j1", status=2)])
        await engine.reconciler.observe_job_list([Job(job_id="j1", status=4)])
        assert engine.reconciler.status("j1") == JobStatus.FAILED
        recent = engine.in_app.recent
        assert len(recent) == 1
        assert recent[0].severity == Severity.WARNING
        assert "j1" in recent[0].body

    async def test_new_alarm_reaches_in_app(self) -> None:
        engine = _make_engine()
        await engine.alarms.handle_alarms(
            [AlarmEvent(id="e1", severity=AlarmSeverity.CRITICAL, message="disk full")]
        )
        assert engine.in_app.recent[0].severity == Severity.CRITICAL
        note = engine.alarms_snapshot()["notifications"][0]
        assert note["kind"] == "alarms"
        assert note["severity"] == "critical"

    async def test_alarm_dropped_on_alarm_view(self) -> None:
        engine = _make_engine()
        engine.navigate("/alarms")
        surfaced = await engine.alarms.handle_alarms(
            [AlarmEvent(id="e1", severity=AlarmSeverity.CRITICAL)]
        )
        assert surfaced == []
        assert engine.in_app.recent == []


# ── Read models ─────────────────────────────────────────────────


class TestSnapshots:
    def test_snapshot_names(self) -> None:
        engine = _make_engine()
        assert set(engine.snapshots()) == {"series", "alarms", "jobs", "capacity"}

    def test_empty_snapshots(self) -> None:
        engine = _make_engine()
        assert engine.series_snapshot() == {}
        assert engine.capacity_snapshot() == []
        alarms = engine.alarms_snapshot()
        assert alarms["surfaced"] == []
        assert alarms["notifications"] == []
        assert engine.jobs_snapshot()["statuses"] == {}

    async def test_jobs_snapshot_statuses(self) -> None:
        engine = _make_engine()
        await engine.reconciler.observe_job_list([Job(job_id="j1", status="running")])
        assert engine.jobs_snapshot()["statuses"] == {"j1": "running"}
