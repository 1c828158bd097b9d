"""AlarmBadge — unacknowledged alarm counts for the header badge."""

from __future__ import annotations

import time

import structlog

from clusterwatch.api.client import ClusterApiClient
from clusterwatch.core.config import AlarmsConfig, PollingConfig
from clusterwatch.core.types import AlarmCounts, AlarmSeverity, BadgeLevel
from clusterwatch.polling.poller import Poller, SuppressFn

logger = structlog.stdlib.get_logger()

ALARM_BADGE_KEY = "alarms.badge"


def badge_level(total: int, critical: int) -> BadgeLevel:
    """Critical if any critical alarm, warning if any alarm, else ok."""
    if critical > 0:
        return BadgeLevel.CRITICAL
    if total > 0:
        return BadgeLevel.WARNING
    return BadgeLevel.OK


class AlarmBadge:
    """Polls total and critical unacknowledged counts over the badge window.

    The critical count is only requested when the total is non-zero.
    """

    def __init__(
        self,
        client: ClusterApiClient,
        poller: Poller,
        alarms_config: AlarmsConfig | None = None,
        polling_config: PollingConfig | None = None,
        suppress: SuppressFn | None = None,
    ) -> None:
        self._client = client
        self._poller = poller
        self._alarms_cfg = alarms_config or AlarmsConfig()
        self._polling_cfg = polling_config or PollingConfig()
        self._suppress = suppress
        self._counts = AlarmCounts()

    @property
    def counts(self) -> AlarmCounts:
        return self._counts

    def start(self, owner: str | None = None) -> None:
        self._poller.start(
            ALARM_BADGE_KEY,
            self._polling_cfg.badge_interval_ms,
            self.fetch_counts,
            self._suppress,
            on_result=self._apply,
            initial_delay_ms=0,
            owner=owner,
        )

    def stop(self) -> None:
        self._poller.stop(ALARM_BADGE_KEY)

    async def fetch_counts(self) -> AlarmCounts:
        hours = self._alarms_cfg.badge_window_hours
        total = await self._client.get_alarm_count(hours=hours)
        critical = 0
        if total > 0:
            critical = await self._client.get_alarm_count(AlarmSeverity.CRITICAL, hours=hours)
        return AlarmCounts(
            total=total,
            critical=critical,
            level=badge_level(total, critical),
            updated_at=time.time(),
        )

    def _apply(self, counts: AlarmCounts) -> None:
        if counts.level != self._counts.level:
            logger.info(
                "alarm_badge_changed",
                previous=self._counts.level,
                level=counts.level,
                total=counts.total,
                critical=counts.critical,
            )
        self._counts = counts
