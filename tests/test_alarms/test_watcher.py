"""Tests for AlarmWatcher — dedup, suppression, aggregated notifications."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from clusterwatch.alarms.dedup import EventDeduplicator
from clusterwatch.alarms.watcher import RECENT_ALARMS_KEY, AlarmWatcher
from clusterwatch.api.exceptions import ApiConnectionError
from clusterwatch.core.config import AlarmsConfig, PollingConfig
from clusterwatch.core.types import AlarmEvent, AlarmSeverity
from clusterwatch.monitor.channels import NotificationChannel
from clusterwatch.monitor.dispatcher import AlertDispatcher
from clusterwatch.monitor.types import AlertMessage, Severity
from clusterwatch.polling.poller import Poller

# ── Helpers ─────────────────────────────────────────────────────


class FakeChannel(NotificationChannel):
    """In-memory channel for testing."""

    def __init__(self) -> None:
        self.sent: list[AlertMessage] = []

    async def send(self, msg: AlertMessage) -> bool:
        self.sent.append(msg)
        return True

    async def close(self) -> None:
        pass


def _alarm(alarm_id: str, severity: AlarmSeverity = AlarmSeverity.CRITICAL) -> AlarmEvent:
    return AlarmEvent(id=alarm_id, severity=severity, message="disk full", host="db1")


def _polling() -> PollingConfig:
    return PollingConfig(alarm_interval_ms=10, alarm_initial_delay_ms=0)


def _make_watcher(
    alarms: list[AlarmEvent] | None = None,
    suppress: bool = False,
    error: Exception | None = None,
) -> tuple[AlarmWatcher, AsyncMock, FakeChannel, Poller]:
    client = AsyncMock()
    if error is not None:
        client.get_recent_alarms.side_effect = error
    else:
        client.get_recent_alarms.return_value = alarms or []
    channel = FakeChannel()
    poller = Poller()
    watcher = AlarmWatcher(
        client,
        poller,
        EventDeduplicator(),
        dispatcher=AlertDispatcher(channels=[channel], throttle_secs=60),
        alarms_config=AlarmsConfig(),
        polling_config=_polling(),
        suppress=lambda: suppress,
    )
    return watcher, client, channel, poller


# ── handle_alarms ───────────────────────────────────────────────


class TestHandleAlarms:
    async def test_new_critical_alarm_notifies_once(self) -> None:
        watcher, _, channel, _ = _make_watcher()
        batch = [_alarm("e1")]
        assert await watcher.handle_alarms(batch) == batch
        assert await watcher.handle_alarms(batch) == []
        assert len(channel.sent) == 1
        assert channel.sent[0].severity == Severity.CRITICAL
        assert channel.sent[0].title == "Critical Alarm Detected!"

    async def test_batch_aggregated_into_one_notification(self) -> None:
        watcher, _, channel, _ = _make_watcher()
        await watcher.handle_alarms([_alarm("e1"), _alarm("e2")])
        assert len(channel.sent) == 1
        assert channel.sent[0].body.startswith("2 critical alarm(s)")

    async def test_non_critical_ignored(self) -> None:
        watcher, _, channel, _ = _make_watcher()
        new = await watcher.handle_alarms([_alarm("w1", AlarmSeverity.WARNING)])
        assert new == []
        assert channel.sent == []

    async def test_suppressed_batch_dropped(self) -> None:
        watcher, _, channel, _ = _make_watcher(suppress=True)
        assert await watcher.handle_alarms([_alarm("e1")]) == []
        assert channel.sent == []
        assert watcher.surfaced == []

    async def test_callbacks_receive_new_alarms(self) -> None:
        watcher, _, _, _ = _make_watcher()
        received: list[list[AlarmEvent]] = []
        watcher.on_new_alarms(received.append)
        await watcher.handle_alarms([_alarm("e1"), _alarm("e1")])
        assert [[a.id for a in batch] for batch in received] == [["e1"]]

    async def test_callback_error_does_not_block_dispatch(self) -> None:
        watcher, _, channel, _ = _make_watcher()

        def _bad(alarms: list[AlarmEvent]) -> None:
            raise RuntimeError("ui gone")

        watcher.on_new_alarms(_bad)
        await watcher.handle_alarms([_alarm("e1")])
        assert len(channel.sent) == 1

    async def test_surfaced_read_model(self) -> None:
        watcher, _, _, _ = _make_watcher()
        await watcher.handle_alarms([_alarm("e1")])
        await watcher.handle_alarms([_alarm("e2")])
        assert [a.id for a in watcher.surfaced] == ["e1", "e2"]


# ── Polling ─────────────────────────────────────────────────────


class TestAlarmWatcherPolling:
    async def test_poll_surfaces_each_alarm_once(self) -> None:
        watcher, client, channel, poller = _make_watcher([_alarm("e1")])
        watcher.start(owner="layout")
        assert watcher.running
        await asyncio.sleep(0.06)
        await poller.close()

        assert client.get_recent_alarms.await_count >= 2
        client.get_recent_alarms.assert_awaited_with(limit=4)
        assert [a.id for a in watcher.surfaced] == ["e1"]
        assert len(channel.sent) == 1

    async def test_suppressed_poll_does_not_fetch(self) -> None:
        watcher, client, _, poller = _make_watcher([_alarm("e1")], suppress=True)
        watcher.start()
        await asyncio.sleep(0.04)
        await poller.close()
        client.get_recent_alarms.assert_not_awaited()

    async def test_fetch_error_becomes_stale_warning(self) -> None:
        watcher, _, channel, poller = _make_watcher(error=ApiConnectionError("down"))
        watcher.start()
        await asyncio.sleep(0.05)
        await poller.close()

        # Throttled per source: one warning despite several failures.
        assert len(channel.sent) == 1
        assert channel.sent[0].title == "Data may be stale"
        assert channel.sent[0].source == f"fetch_warning:{RECENT_ALARMS_KEY}"

    async def test_stop(self) -> None:
        watcher, _, _, poller = _make_watcher()
        watcher.start()
        watcher.stop()
        assert not watcher.running
        await poller.close()
