"""Pure functions that convert engine events into AlertMessage objects."""

from __future__ import annotations

from collections.abc import Sequence

from clusterwatch.core.types import (
    AlarmEvent,
    AlarmSeverity,
    CapacityAlert,
    CapacityStatus,
    FetchWarning,
    JobStatus,
    JobStatusChange,
)
from clusterwatch.monitor.types import AlertMessage, NotificationKind, Severity

# ── Severity mappings ───────────────────────────────────────────

_ALARM_SEVERITY: dict[AlarmSeverity, Severity] = {
    AlarmSeverity.INFO: Severity.INFO,
    AlarmSeverity.WARNING: Severity.WARNING,
    AlarmSeverity.CRITICAL: Severity.CRITICAL,
}

_ALARM_TITLES: dict[AlarmSeverity, str] = {
    AlarmSeverity.INFO: "New Alarm",
    AlarmSeverity.WARNING: "Warning Alarm",
    AlarmSeverity.CRITICAL: "Critical Alarm Detected!",
}

_JOB_SEVERITY: dict[JobStatus, Severity] = {
    JobStatus.PENDING: Severity.DEBUG,
    JobStatus.RUNNING: Severity.DEBUG,
    JobStatus.COMPLETED: Severity.INFO,
    JobStatus.FAILED: Severity.WARNING,
}

_CAPACITY_SEVERITY: dict[CapacityStatus, Severity] = {
    CapacityStatus.STABLE: Severity.DEBUG,
    CapacityStatus.GOOD: Severity.DEBUG,
    CapacityStatus.WARNING: Severity.WARNING,
    CapacityStatus.CRITICAL: Severity.CRITICAL,
}


# ── Formatters ──────────────────────────────────────────────────


def format_alarm_batch(alarms: Sequence[AlarmEvent]) -> AlertMessage:
    """One notification for a batch of newly surfaced alarms.

    The batch severity is the highest severity present.
    """
    top = max((a.severity for a in alarms), key=lambda s: s.rank, default=AlarmSeverity.INFO)
    count = len(alarms)
    fields = {a.id: a.message or a.type or a.host for a in alarms}
    return AlertMessage(
        severity=_ALARM_SEVERITY[top],
        title=_ALARM_TITLES[top],
        body=f"{count} {top.value} alarm(s) detected. Click to view details.",
        fields=fields,
        kind=NotificationKind.ALARMS,
        throttle_key=f"alarms:{top.value}",
        raw={"alarm_ids": [a.id for a in alarms]},
    )


def format_job_change(change: JobStatusChange) -> AlertMessage:
    previous = change.previous.name if change.previous is not None else "UNKNOWN"
    return AlertMessage(
        severity=_JOB_SEVERITY[change.current],
        title=f"Job {change.current.name}",
        body=f"Job {change.job_id}: {previous} -> {change.current.name}",
        fields={"job_id": change.job_id, "source": change.source.value},
        kind=NotificationKind.JOB,
        throttle_key=f"job:{change.job_id}:{change.current.name.lower()}",
        timestamp=change.timestamp,
        raw=change.model_dump(mode="json"),
    )


def format_fetch_warning(warning: FetchWarning) -> AlertMessage:
    """Transient inline warning; throttled per source by the dispatcher."""
    fields = {"source": warning.source}
    if warning.error_type:
        fields["error"] = warning.error_type
    return AlertMessage(
        severity=Severity.WARNING,
        title="Data may be stale",
        body=warning.message,
        fields=fields,
        kind=NotificationKind.FETCH_WARNING,
        throttle_key=f"fetch_warning:{warning.source}",
        timestamp=warning.timestamp,
    )


def format_capacity_alert(alert: CapacityAlert) -> AlertMessage:
    growth = alert.growth
    fields = {
        "series": str(alert.key),
        "field": alert.field,
        "daily_rate": f"{growth.daily_rate:.2f}",
    }
    if growth.projected_exhaustion_days is not None:
        fields["days_until_exhaustion"] = f"{growth.projected_exhaustion_days:.1f}"
        body = (
            f"{alert.field} on {alert.key.entity} exhausts in "
            f"{growth.projected_exhaustion_days:.1f} days"
        )
    else:
        body = f"{alert.field} on {alert.key.entity} is not growing"
    return AlertMessage(
        severity=_CAPACITY_SEVERITY[growth.status],
        title=f"Capacity {growth.status.value.upper()}",
        body=body,
        fields=fields,
        kind=NotificationKind.CAPACITY,
        throttle_key=f"capacity:{alert.key}:{alert.field}",
        timestamp=alert.timestamp,
    )
