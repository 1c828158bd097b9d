"""SeriesCache — TTL memoization of stitched series, keyed by SeriesKey."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import structlog

from clusterwatch.core.types import SeriesKey, StitchedRow

logger = structlog.stdlib.get_logger()

Clock = Callable[[], float]


@dataclass(frozen=True)
class _Entry:
    rows: tuple[StitchedRow, ...]
    fetched_at: float


class SeriesCache:
    """Pure storage: a ``get`` within ``ttl_secs`` of the matching ``put``
    returns the rows, anything older is a miss and is evicted.

    The cache does not coalesce fetches; the poller's in-flight guard does.
    Range changes must call ``invalidate_all()`` because the key's range
    string cannot tell which window the cached rows cover.
    """

    def __init__(self, ttl_secs: float = 15.0, clock: Clock = time.monotonic) -> None:
        self._ttl_secs = ttl_secs
        self._clock = clock
        self._entries: dict[SeriesKey, _Entry] = {}

    @property
    def ttl_secs(self) -> float:
        return self._ttl_secs

    def get(self, key: SeriesKey) -> tuple[StitchedRow, ...] | None:
        """Return cached rows for *key*, or None on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at > self._ttl_secs:
            del self._entries[key]
            logger.debug("series_cache_expired", key=str(key))
            return None
        return entry.rows

    def put(
        self,
        key: SeriesKey,
        rows: Sequence[StitchedRow],
        fetched_at: float | None = None,
    ) -> None:
        """Store *rows* for *key*, replacing any previous entry."""
        stamp = self._clock() if fetched_at is None else fetched_at
        self._entries[key] = _Entry(rows=tuple(rows), fetched_at=stamp)

    def invalidate(self, key: SeriesKey) -> None:
        self._entries.pop(key, None)

    def invalidate_all(self) -> None:
        """Drop every entry (called when the query time range changes)."""
        count = len(self._entries)
        self._entries.clear()
        logger.debug("series_cache_invalidated", entries=count)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, SeriesKey) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
