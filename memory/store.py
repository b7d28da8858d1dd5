from __future__ import annotations

from collections import Counter
import copy
from datetime import date, datetime, timedelta, timezone
import logging
import threading
import zlib
from typing import Any, Callable, Mapping

from activity.errors import MemorySchemaError
from activity.models import (
    ActionItemHistoryEntry,
    ActionItemKind,
    ContributorProfile,
    Event,
    MemoryContext,
    ProcessedData,
    VelocityMetrics,
    parse_timestamp,
)
from activity.trends import extract_trends
from memory.codec import decode_context, decode_report, encode_context, encode_report
from memory.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

CONTEXT_PREFIX = "context:"
REPORT_PREFIX = "report:"
HISTORY_LIMIT = 7
REPO_KEY_PREFIX = "repo:"
LOCK_STRIPES = 16


def context_key(day: date | str) -> str:
    return f"{CONTEXT_PREFIX}{_day(day)}"


def report_key(day: date | str) -> str:
    return f"{REPORT_PREFIX}{_day(day)}"


def _day(value: date | str) -> str:
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    """Rolling per-date context over an opaque key-value backing.

    Entries that fail to decode are deleted on read so a poisoned value is only
    ever seen once, and read failures of the backing store count as absent.
    ``update`` serializes per date key within this process.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        now: Callable[[], datetime] = _utc_now,
        window_days: int = 7,
    ) -> None:
        self.kv = kv
        self._now = now
        self.window_days = max(1, int(window_days))
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def today(self) -> date:
        current = self._now()
        if current.tzinfo is not None:
            current = current.astimezone(timezone.utc)
        return current.date()

    def get_context(self, day: date | str) -> MemoryContext | None:
        key = context_key(day)
        return self._decode_or_discard(key, self._read(key))

    def update(self, day: date | str, processed: ProcessedData) -> MemoryContext:
        key = context_key(day)
        with self._lock_for(key):
            # Read failures propagate here so an unreadable entry is never overwritten.
            stored = self._decode_or_discard(key, self.kv.get(key))
            context = stored or MemoryContext(date=_day(day))

            for profile in processed.contributors:
                context.contributor_profiles[profile.id] = copy.deepcopy(profile)

            _merge_relationships(context.project_relationships, processed.events)
            context.trending_topics = extract_trends(processed.events)
            context.velocity_metrics = velocity_from_events(processed.events)

            kinds = Counter(item.kind for item in processed.action_items)
            context.action_items_history.append(
                ActionItemHistoryEntry(
                    date=_day(day),
                    resolved_count=kinds[ActionItemKind.REVIEW_NEEDED],
                    new_count=len(processed.action_items),
                    overdue_count=kinds[ActionItemKind.OVERDUE],
                )
            )
            context.action_items_history = context.action_items_history[-HISTORY_LIMIT:]

            self.kv.set(key, encode_context(context))
        logger.info(
            "Memory updated for %s: %d profile(s), %d relationship key(s)",
            context.date,
            len(context.contributor_profiles),
            len(context.project_relationships),
        )
        return context

    def recall_profile(self, contributor_id: str) -> ContributorProfile | None:
        for day in self._recent_days(self.window_days):
            context = self.get_context(day)
            if context is None:
                continue
            profile = context.contributor_profiles.get(contributor_id)
            if profile is not None:
                return profile
        return None

    def recall_velocity_trend(self, days: int = 7) -> list[tuple[str, VelocityMetrics]]:
        trend: list[tuple[str, VelocityMetrics]] = []
        for day in self._recent_days(days):
            context = self.get_context(day)
            if context is not None:
                trend.append((context.date, context.velocity_metrics))
        return trend

    def recall_project_relationships(self) -> dict[str, list[str]]:
        context = self.get_context(self.today())
        return dict(context.project_relationships) if context else {}

    def cleanup(self) -> str:
        """Delete the context dated exactly ``window_days`` before today.

        Only that single date is purged; older leftovers are not swept.
        """
        cutoff = self.today() - timedelta(days=self.window_days)
        key = context_key(cutoff)
        try:
            self.kv.delete(key)
        except Exception:
            logger.exception("Failed to clean up memory entry %s", key)
        else:
            logger.info("Cleaned up memory entry %s", key)
        return key

    def store_report(self, report: Mapping[str, Any]) -> str:
        if not isinstance(report.get("date"), str):
            raise ValueError("Report requires a 'date' string")
        key = report_key(report["date"])
        self.kv.set(key, encode_report(report))
        return key

    def recall_previous_report(self, current_day: date | str) -> dict[str, Any] | None:
        previous = date.fromisoformat(_day(current_day)) - timedelta(days=1)
        key = report_key(previous)
        raw = self._read(key)
        if raw is None:
            return None
        try:
            return decode_report(key, raw)
        except MemorySchemaError as exc:
            logger.warning("Discarding corrupted report entry: %s", exc)
            self._discard(key)
            return None

    def stored_dates(self, limit: int = 30) -> list[str]:
        list_keys = getattr(self.kv, "list_keys", None)
        if list_keys is None:
            return []
        return [key[len(CONTEXT_PREFIX):] for key in list_keys(CONTEXT_PREFIX, limit)]

    def _recent_days(self, days: int) -> list[date]:
        today = self.today()
        return [today - timedelta(days=offset) for offset in range(max(0, days))]

    def _read(self, key: str) -> str | None:
        try:
            return self.kv.get(key)
        except Exception:
            logger.exception("Failed to read memory entry %s, treating it as absent", key)
            return None

    def _decode_or_discard(self, key: str, raw: str | None) -> MemoryContext | None:
        if raw is None:
            return None
        try:
            return decode_context(key, raw)
        except MemorySchemaError as exc:
            logger.warning("Discarding corrupted memory entry: %s", exc)
            self._discard(key)
            return None

    def _discard(self, key: str) -> None:
        try:
            self.kv.delete(key)
        except Exception:
            logger.exception("Failed to delete corrupted memory entry %s", key)

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % LOCK_STRIPES]


def velocity_from_events(events: list[Event]) -> VelocityMetrics:
    subtypes = Counter(event.subtype for event in events)
    return VelocityMetrics(
        daily_pr_count=subtypes["pr_opened"],
        daily_issue_count=subtypes["issue_opened"],
        avg_review_time_hours=average_review_hours(events),
        deployment_frequency=subtypes["deployment"],
    )


def average_review_hours(events: list[Event]) -> float:
    durations: list[float] = []
    for event in events:
        if event.subtype != "pr_merged":
            continue
        created_raw = event.metadata.get("created_at")
        if created_raw is None:
            continue
        try:
            created = parse_timestamp(created_raw)
        except ValueError:
            logger.debug("Ignoring unparseable created_at on %s", event.id)
            continue
        hours = (event.timestamp - created).total_seconds() / 3600
        if hours >= 0:
            durations.append(hours)
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


def _merge_relationships(relationships: dict[str, list[str]], events: list[Event]) -> None:
    for event in events:
        if not event.repository:
            continue
        if event.project:
            _add_edge(relationships, event.project, event.repository)
        if event.channel:
            _add_edge(relationships, f"{REPO_KEY_PREFIX}{event.repository}", event.channel)


def _add_edge(relationships: dict[str, list[str]], source: str, target: str) -> None:
    targets = relationships.setdefault(source, [])
    if target not in targets:
        targets.append(target)
