"""EventDeduplicator — surface each alarm id at most once per session."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from clusterwatch.core.types import AlarmEvent, AlarmSeverity

logger = structlog.stdlib.get_logger()


class EventDeduplicator:
    """Owns the set of alarm ids already shown to the user.

    ``filter_new`` drops ids already seen and events below the severity
    filter, keeps the first passing occurrence of each id in the batch, and
    records only those survivors.
    An id that was shown as critical is therefore never shown again, even if
    a later response reports it with a different severity.  The set is only
    cleared by :meth:`reset`, never by time.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    @property
    def seen(self) -> frozenset[str]:
        """Read-only view of surfaced alarm ids."""
        return frozenset(self._seen)

    def __len__(self) -> int:
        return len(self._seen)

    def filter_new(
        self,
        events: Iterable[AlarmEvent],
        severity_filter: AlarmSeverity = AlarmSeverity.CRITICAL,
    ) -> list[AlarmEvent]:
        """Return events not shown before whose severity passes the filter.

        Args:
            events: Latest recent-alarms batch, in feed order.
            severity_filter: Minimum severity to surface.

        Returns:
            Surviving events (first passing occurrence of each id), now marked
            seen.
        """
        surfaced: list[AlarmEvent] = []
        batch_ids: set[str] = set()
        for event in events:
            if event.id in self._seen or event.id in batch_ids:
                continue
            if event.severity.rank < severity_filter.rank:
                continue
            batch_ids.add(event.id)
            surfaced.append(event)

        self._seen.update(batch_ids)

        if surfaced:
            logger.debug(
                "alarms_marked_seen",
                count=len(surfaced),
                seen_total=len(self._seen),
            )
        return surfaced

    def reset(self) -> None:
        """Forget every surfaced id (the user has reviewed the alarm list)."""
        cleared = len(self._seen)
        self._seen.clear()
        logger.info("alarm_dedup_reset", cleared=cleared)
