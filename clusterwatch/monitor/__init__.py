"""Notification dispatch, channels, and the read-model HTTP server."""

from clusterwatch.monitor.channels import InAppChannel, NotificationChannel, WebhookChannel
from clusterwatch.monitor.dispatcher import AlertDispatcher, DispatchOutcome
from clusterwatch.monitor.factory import create_monitor_stack
from clusterwatch.monitor.formatters import (
    format_alarm_batch,
    format_capacity_alert,
    format_fetch_warning,
    format_job_change,
)
from clusterwatch.monitor.types import AlertMessage, NotificationKind, Severity
from clusterwatch.monitor.web_dashboard import create_web_app, start_web_dashboard

__all__ = [
    "AlertDispatcher",
    "AlertMessage",
    "DispatchOutcome",
    "InAppChannel",
    "NotificationChannel",
    "NotificationKind",
    "Severity",
    "WebhookChannel",
    "create_monitor_stack",
    "create_web_app",
    "format_alarm_batch",
    "format_capacity_alert",
    "format_fetch_warning",
    "format_job_change",
    "start_web_dashboard",
]
