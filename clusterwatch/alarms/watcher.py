"""AlarmWatcher — polls recent alarms and notifies once per new critical id."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Sequence

import structlog

from clusterwatch.alarms.dedup import EventDeduplicator
from clusterwatch.api.client import ClusterApiClient
from clusterwatch.core.config import AlarmsConfig, PollingConfig
from clusterwatch.core.types import AlarmEvent, AlarmSeverity, FetchWarning
from clusterwatch.monitor.dispatcher import AlertDispatcher
from clusterwatch.polling.poller import Poller, SuppressFn

logger = structlog.stdlib.get_logger()

AlarmBatchCallback = Callable[[list[AlarmEvent]], Awaitable[None] | None]

RECENT_ALARMS_KEY = "alarms.recent"


class AlarmWatcher:
    """Recent-alarm notifier.

    The poll is suppressed while the alarm list is on screen (the user is
    looking at everything already); the engine resets the deduplicator when
    that view is entered.  Results that land while suppressed are dropped
    so a fetch started just before navigation cannot re-notify.

    Usage::

        watcher = AlarmWatcher(client, poller, dedup, dispatcher, suppress=views.on_alarm_view)
        watcher.on_new_alarms(show_toast)
        watcher.start(owner="layout")
    """

    def __init__(
        self,
        client: ClusterApiClient,
        poller: Poller,
        dedup: EventDeduplicator,
        dispatcher: AlertDispatcher | None = None,
        alarms_config: AlarmsConfig | None = None,
        polling_config: PollingConfig | None = None,
        suppress: SuppressFn | None = None,
    ) -> None:
        self._client = client
        self._poller = poller
        self._dedup = dedup
        self._dispatcher = dispatcher
        self._alarms_cfg = alarms_config or AlarmsConfig()
        self._polling_cfg = polling_config or PollingConfig()
        self._suppress = suppress
        self._severity_filter = AlarmSeverity(self._alarms_cfg.notify_severity)
        self._callbacks: list[AlarmBatchCallback] = []
        self._surfaced: deque[AlarmEvent] = deque(maxlen=200)

    @property
    def surfaced(self) -> list[AlarmEvent]:
        """Alarms notified this session, oldest first."""
        return list(self._surfaced)

    @property
    def running(self) -> bool:
        return self._poller.is_running(RECENT_ALARMS_KEY)

    def on_new_alarms(self, callback: AlarmBatchCallback) -> None:
        """Register a callback for each batch of newly surfaced alarms."""
        self._callbacks.append(callback)

    def start(self, owner: str | None = None) -> None:
        self._poller.start(
            RECENT_ALARMS_KEY,
            self._polling_cfg.alarm_interval_ms,
            self._fetch,
            self._is_suppressed,
            on_result=self.handle_alarms,
            on_error=self._handle_error,
            initial_delay_ms=self._polling_cfg.alarm_initial_delay_ms,
            owner=owner,
        )

    def stop(self) -> None:
        self._poller.stop(RECENT_ALARMS_KEY)

    async def _fetch(self) -> list[AlarmEvent]:
        return await self._client.get_recent_alarms(limit=self._alarms_cfg.recent_limit)

    def _is_suppressed(self) -> bool:
        return self._suppress is not None and self._suppress()

    async def handle_alarms(self, alarms: Sequence[AlarmEvent]) -> list[AlarmEvent]:
        """Reduce one recent-alarms response; returns the newly surfaced alarms."""
        if self._is_suppressed():
            logger.debug("alarm_batch_dropped_suppressed", count=len(alarms))
            return []

        new = self._dedup.filter_new(alarms, self._severity_filter)
        if not new:
            return []

        self._surfaced.extend(new)
        logger.info(
            "alarm_batch_new",
            count=len(new),
            alarm_ids=[a.id for a in new],
        )

        for cb in self._callbacks:
            try:
                result = cb(list(new))
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("alarm_callback_error")

        if self._dispatcher is not None:
            await self._dispatcher.on_alarms(new)
        return new

    async def _handle_error(self, exc: Exception) -> None:
        if self._dispatcher is None:
            return
        await self._dispatcher.on_fetch_warning(FetchWarning(
            source=RECENT_ALARMS_KEY,
            message=f"Could not check for new alarms: {exc}",
            error_type=type(exc).__name__,
        ))
