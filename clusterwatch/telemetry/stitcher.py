"""Point stitcher — flat field-tagged samples into time-keyed rows.

The Telemetry API returns one point per (timestamp, field) with tags such as
``agent_id``, ``database`` or ``collection`` attached.  Charts and the
predictors want one row per timestamp with one column per field, so every
poll response is reduced here before it reaches the cache.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from clusterwatch.core.types import Sample, StitchedRow

# Picks the entity a sample belongs to (replica member, collection, ...).
EntityExtractor = Callable[[Sample], str | None]

_UNSAFE_KEY_CHARS = re.compile(r"[.:/\-\s]")


def sanitize_entity(entity: str) -> str:
    """Make an entity name safe to use as a column-name prefix."""
    return _UNSAFE_KEY_CHARS.sub("_", entity)


def _resolve_extractor(entity_tag: str | EntityExtractor | None) -> EntityExtractor | None:
    if entity_tag is None:
        return None
    if isinstance(entity_tag, str):
        tag = entity_tag
        return lambda sample: sample.tags.get(tag)
    return entity_tag


def qualified_field(sample: Sample, extractor: EntityExtractor | None) -> str:
    """Return ``field`` or ``<entity>_<field>`` for a sample."""
    if extractor is None:
        return sample.field
    entity = extractor(sample)
    if not entity:
        return sample.field
    return f"{sanitize_entity(entity)}_{sample.field}"


def stitch_samples(
    samples: Iterable[Sample],
    entity_tag: str | EntityExtractor | None = None,
) -> list[StitchedRow]:
    """Group samples by timestamp into ascending rows.

    Args:
        samples: Points in any order; overlapping responses may repeat points.
        entity_tag: Tag name (or callable) whose value qualifies the column
            name, e.g. ``"collection"`` yields ``orders_count``.

    Returns:
        Rows sorted by time, one per distinct timestamp.  When two samples
        share a timestamp and qualified column the later one in input order
        wins.
    """
    extractor = _resolve_extractor(entity_tag)
    grouped: dict[datetime, dict[str, float]] = {}
    for sample in samples:
        values = grouped.setdefault(sample.timestamp, {})
        values[qualified_field(sample, extractor)] = sample.value

    return [
        StitchedRow(time=ts, values=grouped[ts])
        for ts in sorted(grouped)
    ]


def latest_value(rows: Sequence[StitchedRow], field: str) -> float | None:
    """Most recent value of *field*, skipping rows that lack the column."""
    for row in reversed(rows):
        if field in row.values:
            return row.values[field]
    return None


def field_names(rows: Iterable[StitchedRow]) -> list[str]:
    """Sorted union of all column names across *rows*."""
    names: set[str] = set()
    for row in rows:
        names.update(row.values)
    return sorted(names)
