from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any, Iterable, Mapping

from activity.models import Event, coerce_metadata, ensure_utc, event_from_dict, unique_strings

logger = logging.getLogger(__name__)

DedupKey = tuple[str, str, str, float]


def dedup_key(event: Event) -> DedupKey:
    return (
        event.platform.value,
        event.subtype,
        event.author.id,
        event.timestamp.timestamp(),
    )


def normalize_events(raw_events: Iterable[Event | Mapping[str, Any]]) -> list[Event]:
    """Merge events from every source into one deduplicated stream, newest first.

    The first occurrence of a (platform, subtype, author, timestamp) key wins.
    Mappings that cannot be parsed are skipped and logged.
    """
    seen_keys: set[DedupKey] = set()
    seen_ids: set[str] = set()
    unique: list[Event] = []
    skipped = 0

    for raw in raw_events:
        try:
            event = raw if isinstance(raw, Event) else event_from_dict(raw)
            event = _canonicalize(event)
        except (ValueError, TypeError, AttributeError) as exc:
            skipped += 1
            logger.warning("Skipping malformed event: %s", exc)
            continue

        key = dedup_key(event)
        if key in seen_keys or event.id in seen_ids:
            continue
        seen_keys.add(key)
        seen_ids.add(event.id)
        unique.append(event)

    if skipped:
        logger.info("Normalization skipped %d malformed event(s)", skipped)

    unique.sort(key=lambda item: item.timestamp, reverse=True)
    return unique


def _canonicalize(event: Event) -> Event:
    return replace(
        event,
        timestamp=ensure_utc(event.timestamp),
        labels=unique_strings(event.labels),
        assignees=unique_strings(event.assignees),
        metadata=coerce_metadata(event.metadata),
    )
