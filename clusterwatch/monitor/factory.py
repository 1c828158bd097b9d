"""Convenience factory for wiring the monitoring stack."""

from __future__ import annotations

from clusterwatch.core.config import AlertsConfig
from clusterwatch.monitor.channels import InAppChannel, NotificationChannel, WebhookChannel
from clusterwatch.monitor.dispatcher import AlertDispatcher


def create_monitor_stack(
    config: AlertsConfig,
    in_app_max_messages: int = 100,
) -> tuple[AlertDispatcher, InAppChannel]:
    """Build a dispatcher with the in-app channel plus any configured webhook.

    Returns:
        (dispatcher, in_app_channel)
    """
    in_app = InAppChannel(max_messages=in_app_max_messages)
    channels: list[NotificationChannel] = [in_app]

    if config.webhook.enabled:
        channels.append(WebhookChannel(config.webhook))

    dispatcher = AlertDispatcher(
        channels=channels,
        throttle_secs=config.throttle_secs,
    )
    return dispatcher, in_app
