"""Notification channels — in-process feed for the UI and a JSON webhook."""

from __future__ import annotations

import abc
import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
import structlog

from clusterwatch.core.config import WebhookConfig
from clusterwatch.monitor.types import AlertMessage, Severity

logger = structlog.get_logger(__name__)

MessageCallback = Callable[[AlertMessage], Awaitable[None] | None]


class NotificationChannel(abc.ABC):
    """Base class for notification delivery channels."""

    @abc.abstractmethod
    async def send(self, msg: AlertMessage) -> bool:
        """Send a message. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class InAppChannel(NotificationChannel):
    """Keeps the most recent messages for the UI and fans out to subscribers.

    This is the toast/inline-warning surface: the UI reads :attr:`recent`
    or subscribes with :meth:`subscribe`.
    """

    def __init__(self, max_messages: int = 100) -> None:
        self._recent: deque[AlertMessage] = deque(maxlen=max_messages)
        self._subscribers: list[MessageCallback] = []

    @property
    def recent(self) -> list[AlertMessage]:
        return list(self._recent)

    def subscribe(self, callback: MessageCallback) -> None:
        self._subscribers.append(callback)

    def clear(self) -> None:
        self._recent.clear()

    async def send(self, msg: AlertMessage) -> bool:
        self._recent.append(msg)
        for cb in self._subscribers:
            try:
                result = cb(msg)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("in_app_subscriber_error", title=msg.title)
        return True

    async def close(self) -> None:
        self._subscribers.clear()


class WebhookChannel(NotificationChannel):
    """POSTs each message as a flat JSON document to a webhook URL.

    Messages below ``min_severity`` are skipped; any 2xx response counts as
    delivered.
    """

    def __init__(self, config: WebhookConfig) -> None:
        self._url = config.url.get_secret_value()
        self._min_severity = Severity[config.min_severity.upper()]
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    @staticmethod
    def payload(msg: AlertMessage) -> dict[str, Any]:
        return {
            **msg.summary(),
            "text": f"[{msg.severity.name}] {msg.title}",
            "source": msg.source,
            "fields": dict(msg.fields),
        }

    async def send(self, msg: AlertMessage) -> bool:
        if msg.severity < self._min_severity:
            logger.debug("webhook_below_min_severity", title=msg.title, severity=msg.severity.name)
            return True

        try:
            session = self._get_session()
            async with session.post(self._url, json=self.payload(msg)) as resp:
                if 200 <= resp.status < 300:
                    return True
                body = await resp.text()
                logger.warning(
                    "webhook_send_failed",
                    status=resp.status,
                    body=body[:200],
                    source=msg.source,
                )
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError):
            logger.exception("webhook_send_error", source=msg.source)
            return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
