"""AlertDispatcher — turns engine events into notifications on every channel."""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Sequence
from enum import StrEnum

import structlog

from clusterwatch.core.types import AlarmEvent, CapacityAlert, FetchWarning, JobStatusChange
from clusterwatch.monitor.channels import NotificationChannel
from clusterwatch.monitor.formatters import (
    format_alarm_batch,
    format_capacity_alert,
    format_fetch_warning,
    format_job_change,
)
from clusterwatch.monitor.types import AlertMessage, NotificationKind, Severity

# One record per routing decision, separate from operational logs.
decision_logger = structlog.get_logger("decision_log")

logger = structlog.get_logger(__name__)


class DispatchOutcome(StrEnum):
    DISPATCHED = "dispatched"
    THROTTLED = "throttled"
    LOG_ONLY = "log_only"


class AlertDispatcher:
    """Routes engine events to notification channels.

    - Every message produces one decision record on ``decision_log``.
    - DEBUG messages are log-only.
    - INFO/WARNING messages are throttled per :attr:`AlertMessage.source`, so
      a failing endpoint yields one stale-data warning per window.
    - CRITICAL messages always go out and restart their source's window.
    - Alarm batches are never throttled; each alarm id arrives at most once.
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel] | None = None,
        throttle_secs: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channels: list[NotificationChannel] = list(channels or [])
        self._throttle_secs = throttle_secs
        self._clock = clock
        self._last_sent: dict[str, float] = {}
        self._outcomes: Counter[DispatchOutcome] = Counter()
        self._channel_failures: Counter[str] = Counter()

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    @property
    def outcomes(self) -> dict[DispatchOutcome, int]:
        return dict(self._outcomes)

    @property
    def channel_failures(self) -> dict[str, int]:
        return dict(self._channel_failures)

    def add_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    def is_throttled(self, source: str) -> bool:
        last = self._last_sent.get(source)
        return last is not None and self._clock() - last < self._throttle_secs

    # ── Event entry points ──────────────────────────────────────

    async def on_alarms(self, alarms: Sequence[AlarmEvent]) -> None:
        if alarms:
            await self._route(format_alarm_batch(alarms))

    async def on_job_change(self, change: JobStatusChange) -> None:
        await self._route(format_job_change(change))

    async def on_fetch_warning(self, warning: FetchWarning) -> None:
        await self._route(format_fetch_warning(warning))

    async def on_capacity_alert(self, alert: CapacityAlert) -> None:
        await self._route(format_capacity_alert(alert))

    async def send(self, msg: AlertMessage) -> None:
        """Deliver *msg* to every channel, ignoring severity and throttle."""
        self._record(msg, DispatchOutcome.DISPATCHED)
        await self._deliver(msg)

    # ── Routing ─────────────────────────────────────────────────

    def _decide(self, msg: AlertMessage) -> DispatchOutcome:
        if msg.severity == Severity.DEBUG:
            return DispatchOutcome.LOG_ONLY
        if msg.kind == NotificationKind.ALARMS:
            return DispatchOutcome.DISPATCHED
        if msg.severity < Severity.CRITICAL and self.is_throttled(msg.source):
            return DispatchOutcome.THROTTLED
        self._last_sent[msg.source] = self._clock()
        return DispatchOutcome.DISPATCHED

    async def _route(self, msg: AlertMessage) -> DispatchOutcome:
        outcome = self._decide(msg)
        self._record(msg, outcome)
        if outcome == DispatchOutcome.DISPATCHED:
            await self._deliver(msg)
        return outcome

    def _record(self, msg: AlertMessage, outcome: DispatchOutcome) -> None:
        self._outcomes[outcome] += 1
        decision_logger.info(
            "decision",
            outcome=outcome.value,
            kind=msg.kind.value,
            source=msg.source,
            severity=msg.severity.name,
            title=msg.title,
            body=msg.body,
            fields=msg.fields,
        )

    async def _deliver(self, msg: AlertMessage) -> None:
        for ch in self._channels:
            name = type(ch).__name__
            try:
                delivered = await ch.send(msg)
            except Exception:
                logger.exception("channel_dispatch_error", channel=name, source=msg.source)
                delivered = False
            if not delivered:
                self._channel_failures[name] += 1

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        for ch in self._channels:
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=type(ch).__name__)
