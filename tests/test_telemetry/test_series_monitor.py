"""Tests for SeriesMonitor — cache-first polling, stale data, range changes, capacity."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from clusterwatch.api.exceptions import ApiConnectionError
from clusterwatch.core.config import PollingConfig
from clusterwatch.core.types import CapacityStatus, FitStatus, Sample, SeriesKey
from clusterwatch.monitor.channels import NotificationChannel
from clusterwatch.monitor.dispatcher import AlertDispatcher
from clusterwatch.monitor.types import AlertMessage, Severity
from clusterwatch.polling.poller import Poller
from clusterwatch.telemetry.cache import SeriesCache
from clusterwatch.telemetry.growth import disk_remaining
from clusterwatch.telemetry.monitor import SeriesMonitor, SeriesSpec, series_poller_key

T0 = datetime(2024, 5, 1, 10, 0, 0, tzinfo=UTC)

# ── Helpers ─────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FakeChannel(NotificationChannel):
    """In-memory channel for testing."""

    def __init__(self) -> None:
        self.sent: list[AlertMessage] = []

    async def send(self, msg: AlertMessage) -> bool:
        self.sent.append(msg)
        return True

    async def close(self) -> None:
        pass


def _cpu_spec(range_: str = "1h") -> SeriesSpec:
    return SeriesSpec(
        key=SeriesKey(entity="node1", dataset="system-cpu", range=range_),
        system="mongodb",
        category="system/cpu",
        agent_id="agent_node1",
    )


def _disk_spec() -> SeriesSpec:
    return SeriesSpec(
        key=SeriesKey(entity="node1", dataset="system-disk", range="7d"),
        system="mongodb",
        category="system/disk",
        agent_id="agent_node1",
    )


def _cpu_samples(value: float = 42.0) -> list[Sample]:
    return [Sample(timestamp=T0, field="cpu_usage", value=value)]


def _disk_samples(used_end: float = 800.0) -> list[Sample]:
    end = T0 + timedelta(days=7)
    return [
        Sample(timestamp=T0, field="used_disk", value=100.0),
        Sample(timestamp=end, field="used_disk", value=used_end),
        Sample(timestamp=end, field="free_disk", value=1000.0),
    ]


def _make_monitor(
    samples: list[Sample] | None = None,
    error: Exception | None = None,
) -> tuple[SeriesMonitor, AsyncMock, SeriesCache, Poller, FakeClock, FakeChannel]:
    client = AsyncMock()
    if error is not None:
        client.get_metrics.side_effect = error
    else:
        client.get_metrics.return_value = samples if samples is not None else _cpu_samples()
    clock = FakeClock()
    cache = SeriesCache(ttl_secs=15.0, clock=clock)
    poller = Poller()
    channel = FakeChannel()
    monitor = SeriesMonitor(
        client,
        poller,
        cache,
        dispatcher=AlertDispatcher(channels=[channel], throttle_secs=60),
        polling_config=PollingConfig(metrics_interval_ms=30_000),
    )
    return monitor, client, cache, poller, clock, channel


async def _settle(poller: Poller, key: SeriesKey) -> None:
    await asyncio.sleep(0.01)
    await poller.wait_idle(series_poller_key(key))


# ── Cache-first polling ─────────────────────────────────────────


class TestSeriesPolling:
    async def test_end_to_end_cache_lifecycle(self) -> None:
        monitor, client, cache, poller, clock, _ = _make_monitor()
        spec = _cpu_spec()
        monitor.watch(spec)
        await _settle(poller, spec.key)

        client.get_metrics.assert_awaited_once_with("mongodb", "system/cpu", "agent_node1", "1h")
        rows = cache.get(spec.key)
        assert rows is not None
        assert rows[0].time == T0
        assert rows[0].values == {"cpu_usage": 42.0}

        clock.advance(5)
        assert cache.get(spec.key) is not None

        clock.advance(15)
        assert cache.get(spec.key) is None

        # Next tick refetches.
        poller.trigger(series_poller_key(spec.key))
        await _settle(poller, spec.key)
        assert client.get_metrics.await_count == 2
        assert cache.get(spec.key) is not None
        await poller.close()

    async def test_tick_with_fresh_cache_skips_fetch(self) -> None:
        monitor, client, _, poller, _, _ = _make_monitor()
        spec = _cpu_spec()
        monitor.watch(spec)
        await _settle(poller, spec.key)
        poller.trigger(series_poller_key(spec.key))
        await _settle(poller, spec.key)
        assert client.get_metrics.await_count == 1
        await poller.close()

    async def test_latest_read_model(self) -> None:
        monitor, _, _, poller, _, _ = _make_monitor()
        spec = _cpu_spec()
        assert monitor.latest(spec.key) == ()
        monitor.watch(spec)
        await _settle(poller, spec.key)
        assert monitor.latest(spec.key)[0].values["cpu_usage"] == 42.0
        assert monitor.updated_at(spec.key) is not None
        assert monitor.watched == [spec.key]
        await poller.close()

    async def test_entity_tag_applied(self) -> None:
        samples = [
            Sample(timestamp=T0, field="count", value=1.0, tags={"collection": "orders"}),
            Sample(timestamp=T0, field="count", value=2.0, tags={"collection": "users"}),
        ]
        monitor, _, _, poller, _, _ = _make_monitor(samples)
        spec = SeriesSpec(
            key=SeriesKey(entity="db1", dataset="collections", range="1h"),
            system="mongodb",
            category="database/collections",
            agent_id="agent_db1",
            entity_tag="collection",
        )
        monitor.watch(spec)
        await _settle(poller, spec.key)
        assert monitor.latest(spec.key)[0].values == {"orders_count": 1.0, "users_count": 2.0}
        await poller.close()

    async def test_unwatch_stops_poller(self) -> None:
        monitor, _, _, poller, _, _ = _make_monitor()
        spec = _cpu_spec()
        monitor.watch(spec, owner="node-detail")
        monitor.unwatch(spec.key)
        assert not poller.is_running(series_poller_key(spec.key))
        assert monitor.watched == []


# ── Failures ────────────────────────────────────────────────────


class TestSeriesFailures:
    async def test_failure_keeps_last_good_rows(self) -> None:
        monitor, client, cache, poller, clock, channel = _make_monitor()
        spec = _cpu_spec()
        monitor.watch(spec)
        await _settle(poller, spec.key)

        client.get_metrics.side_effect = ApiConnectionError("timeout")
        clock.advance(20)
        poller.trigger(series_poller_key(spec.key))
        await _settle(poller, spec.key)

        assert monitor.latest(spec.key)[0].values["cpu_usage"] == 42.0
        warning = monitor.warning(spec.key)
        assert warning is not None
        assert warning.error_type == "ApiConnectionError"
        assert [m.title for m in channel.sent] == ["Data may be stale"]
        assert cache.get(spec.key) is None
        await poller.close()

    async def test_success_clears_warning(self) -> None:
        monitor, client, _, poller, _, _ = _make_monitor(error=ApiConnectionError("down"))
        spec = _cpu_spec()
        monitor.watch(spec)
        await _settle(poller, spec.key)
        assert monitor.warning(spec.key) is not None

        client.get_metrics.side_effect = None
        client.get_metrics.return_value = _cpu_samples()
        poller.trigger(series_poller_key(spec.key))
        await _settle(poller, spec.key)
        assert monitor.warning(spec.key) is None
        await poller.close()


# ── Range changes ───────────────────────────────────────────────


class TestSetRange:
    async def test_set_range_invalidates_cache_and_rewatches(self) -> None:
        monitor, client, cache, poller, _, _ = _make_monitor()
        cpu = _cpu_spec()
        other = SeriesKey(entity="node2", dataset="system-cpu", range="1h")
        cache.put(other, [])
        monitor.watch(cpu, owner="node-detail")
        await _settle(poller, cpu.key)

        new_key = monitor.set_range(cpu.key, "24h")
        assert new_key.range == "24h"
        assert other not in cache
        assert not poller.is_running(series_poller_key(cpu.key))
        assert poller.keys_for_owner("node-detail") == [series_poller_key(new_key)]

        await _settle(poller, new_key)
        client.get_metrics.assert_awaited_with("mongodb", "system/cpu", "agent_node1", "24h")
        await poller.close()

    async def test_set_range_unknown_key(self) -> None:
        monitor, _, _, _, _, _ = _make_monitor()
        with pytest.raises(KeyError):
            monitor.set_range(_cpu_spec().key, "24h")


# ── Capacity & working set ──────────────────────────────────────


class TestDerivations:
    async def test_capacity_alert_on_status_change_only(self) -> None:
        monitor, _, _, poller, clock, channel = _make_monitor(_disk_samples())
        spec = _disk_spec()
        await monitor.watch_capacity(spec.key, "used_disk", disk_remaining)
        monitor.watch(spec)
        await _settle(poller, spec.key)

        growth = monitor.capacity(spec.key, "used_disk")
        assert growth is not None
        assert growth.daily_rate == pytest.approx(100.0)
        assert growth.projected_exhaustion_days == pytest.approx(10.0)
        assert growth.status == CapacityStatus.CRITICAL
        assert [m.severity for m in channel.sent] == [Severity.CRITICAL]

        clock.advance(20)
        poller.trigger(series_poller_key(spec.key))
        await _settle(poller, spec.key)
        assert len(channel.sent) == 1
        await poller.close()

    async def test_fixed_remaining_capacity(self) -> None:
        monitor, _, _, poller, _, _ = _make_monitor(_disk_samples())
        spec = _disk_spec()
        await monitor.watch_capacity(spec.key, "used_disk", 100_000.0)
        monitor.watch(spec)
        await _settle(poller, spec.key)
        growth = monitor.capacity(spec.key, "used_disk")
        assert growth is not None
        assert growth.status == CapacityStatus.GOOD
        await poller.close()

    async def test_capacity_watch_after_data_evaluates_immediately(self) -> None:
        monitor, _, _, poller, _, _ = _make_monitor(_disk_samples())
        spec = _disk_spec()
        monitor.watch(spec)
        await _settle(poller, spec.key)
        await monitor.watch_capacity(spec.key, "used_disk", disk_remaining)
        assert monitor.capacity(spec.key, "used_disk") is not None
        assert list(monitor.capacities()) == [(spec.key, "used_disk")]
        await poller.close()

    async def test_capacity_watch_after_data_dispatches_once(self) -> None:
        monitor, _, _, poller, clock, channel = _make_monitor(_disk_samples())
        spec = _disk_spec()
        monitor.watch(spec)
        await _settle(poller, spec.key)
        assert channel.sent == []

        await monitor.watch_capacity(spec.key, "used_disk", disk_remaining)
        assert [m.severity for m in channel.sent] == [Severity.CRITICAL]

        clock.advance(20)
        poller.trigger(series_poller_key(spec.key))
        await _settle(poller, spec.key)
        assert [m.severity for m in channel.sent] == [Severity.CRITICAL]
        await poller.close()

    async def test_working_set_from_latest_row(self) -> None:
        samples = [
            Sample(timestamp=T0, field="index_size_mb", value=600.0),
            Sample(timestamp=T0, field="data_size_mb", value=1000.0),
            Sample(timestamp=T0, field="connections", value=50.0),
        ]
        monitor, _, _, poller, _, _ = _make_monitor(samples)
        spec = _cpu_spec()
        monitor.watch(spec)
        await _settle(poller, spec.key)
        est = monitor.working_set(spec.key, ram_mb=1000)
        assert est is not None
        assert est.working_set_mb == pytest.approx(900.0)
        assert est.status == FitStatus.TIGHT
        assert monitor.working_set(_disk_spec().key, ram_mb=1000) is None
        await poller.close()
