"""Periodic polling with per-key in-flight guards and owner-scoped teardown."""

from clusterwatch.polling.poller import (
    ErrorCallback,
    FetchFn,
    Poller,
    PollerStats,
    ResultCallback,
    SuppressFn,
)

__all__ = [
    "ErrorCallback",
    "FetchFn",
    "Poller",
    "PollerStats",
    "ResultCallback",
    "SuppressFn",
]
