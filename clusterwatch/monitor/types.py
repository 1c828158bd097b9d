"""Notification types shared by the formatters, dispatcher and channels."""

from __future__ import annotations

import time
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, Field


class Severity(IntEnum):
    """Delivery severity. DEBUG is log-only, CRITICAL skips the throttle."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    CRITICAL = 3


class NotificationKind(StrEnum):
    """Which engine event produced a notification."""

    ALARMS = "alarms"
    JOB = "job"
    FETCH_WARNING = "fetch_warning"
    CAPACITY = "capacity"
    MANUAL = "manual"


class AlertMessage(BaseModel):
    """A formatted notification, ready for the dispatcher.

    ``throttle_key`` groups messages that should not repeat within the
    dispatcher's throttle window; an empty key falls back to the kind.
    """

    severity: Severity
    title: str
    body: str = ""
    kind: NotificationKind = NotificationKind.MANUAL
    throttle_key: str = ""
    fields: dict[str, str] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def source(self) -> str:
        return self.throttle_key or self.kind.value

    def summary(self) -> dict[str, Any]:
        """Compact form for read models and webhook payloads."""
        return {
            "kind": self.kind.value,
            "severity": self.severity.name.lower(),
            "title": self.title,
            "body": self.body,
            "timestamp": self.timestamp,
        }
