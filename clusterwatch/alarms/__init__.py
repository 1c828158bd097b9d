"""Alarm notification path — deduplication, recent-alarm watcher, count badge."""

from clusterwatch.alarms.badge import ALARM_BADGE_KEY, AlarmBadge, badge_level
from clusterwatch.alarms.dedup import EventDeduplicator
from clusterwatch.alarms.watcher import RECENT_ALARMS_KEY, AlarmBatchCallback, AlarmWatcher

__all__ = [
    "ALARM_BADGE_KEY",
    "AlarmBadge",
    "AlarmBatchCallback",
    "AlarmWatcher",
    "EventDeduplicator",
    "RECENT_ALARMS_KEY",
    "badge_level",
]
