from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import re
from typing import Any, Mapping, Protocol, Sequence

from activity.models import (
    SYSTEM_AUTHOR_PREFIX,
    Author,
    Event,
    Platform,
    Priority,
    ensure_utc,
    event_from_dict,
    event_to_dict,
)

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 80
URGENT_WORDS = ("urgent", "asap", "critical")
BROADCAST_WORDS = ("everyone", "@channel", "@here")
ATTENTION_WORDS = ("review", "help")
_MARKUP_RE = re.compile(r"<[^>]*>")
_USER_MENTION_RE = re.compile(r"<@!?([A-Z0-9]+)>")
_CHANNEL_MENTION_RE = re.compile(r"<#[A-Z0-9]+\|([^>]+)>")


class SourceCollector(Protocol):
    platform: Platform

    def fetch_activity(self, window_start: datetime, window_end: datetime) -> list[Event]: ...


def collect_activity(
    collectors: Sequence[SourceCollector],
    window_start: datetime,
    window_end: datetime,
    *,
    max_workers: int = 4,
) -> list[Event]:
    """Fetch every source concurrently. A source that fails counts as empty."""
    if not collectors:
        return []

    def _fetch(collector: SourceCollector) -> list[Event]:
        name = getattr(collector, "platform", type(collector).__name__)
        try:
            events = list(collector.fetch_activity(window_start, window_end))
        except Exception:
            logger.exception("Collector %s unavailable, continuing without it", name)
            return []
        logger.info("Collected %d event(s) from %s", len(events), name)
        return events

    workers = max(1, min(max_workers, len(collectors)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="collector") as executor:
        batches = list(executor.map(_fetch, collectors))

    merged: list[Event] = []
    for batch in batches:
        merged.extend(batch)
    return merged


class JsonFileCollector:
    """Reads an exported JSON array of events for one platform."""

    def __init__(self, path: str | Path, platform: Platform | None = None) -> None:
        self.path = Path(path)
        self.platform = platform

    def fetch_activity(self, window_start: datetime, window_end: datetime) -> list[Event]:
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if isinstance(payload, Mapping):
            payload = payload.get("events", [])
        if not isinstance(payload, list):
            raise ValueError(f"{self.path} does not contain a list of events")

        start = ensure_utc(window_start)
        end = ensure_utc(window_end)
        events: list[Event] = []
        for index, item in enumerate(payload):
            try:
                event = event_from_dict(item)
            except ValueError as exc:
                logger.warning("Skipping item %d in %s: %s", index, self.path.name, exc)
                continue
            if self.platform is not None and event.platform is not self.platform:
                continue
            if start <= event.timestamp <= end:
                events.append(event)
        return events


def write_events_json(path: str | Path, events: Sequence[Event]) -> Path:
    """Export events in the shape JsonFileCollector reads back."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = {"events": [event_to_dict(event) for event in events]}
    target.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return target


def chat_message_to_events(
    message: Mapping[str, Any],
    *,
    platform: Platform,
    channel: str,
    author: Author,
) -> list[Event]:
    """Map one raw chat message to its base event plus one event per reaction."""
    ts = str(message.get("ts") or "")
    if not ts:
        raise ValueError("Chat message is missing 'ts'")
    timestamp = datetime.fromtimestamp(float(ts), tz=timezone.utc)
    text = str(message.get("text") or "")

    reactions = [item for item in message.get("reactions") or [] if isinstance(item, Mapping)]
    files = list(message.get("files") or [])
    thread_ts = message.get("thread_ts")
    is_thread = bool(thread_ts) and str(thread_ts) != ts
    mentions = extract_mentions(text)

    if is_thread:
        subtype = "thread_reply"
    elif files:
        subtype = "file_shared"
    elif reactions:
        subtype = "message_with_reactions"
    else:
        subtype = "message_sent"

    events = [
        Event(
            id=f"{platform.value}_{ts}_{channel}",
            platform=platform,
            subtype=subtype,
            timestamp=timestamp,
            author=author,
            title=message_title(text, is_thread=is_thread, has_files=bool(files)),
            description=text or None,
            priority=message_priority(text, mentions, has_files=bool(files)),
            channel=channel,
            metadata={
                "ts": ts,
                "thread_ts": str(thread_ts) if thread_ts else None,
                "reply_count": int(message.get("reply_count") or 0),
                "has_files": bool(files),
                "mentions": mentions,
                "channel_id": channel,
            },
        )
    ]

    seen: set[str] = set()
    for reaction in reactions:
        name = str(reaction.get("name") or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        count = int(reaction.get("count") or 0)
        events.append(
            Event(
                id=f"{platform.value}_reaction_{ts}_{name}",
                platform=platform,
                subtype="reaction_added",
                timestamp=timestamp,
                author=Author(id=f"{SYSTEM_AUTHOR_PREFIX}reaction:{name}", name=f"{name} reactions"),
                title=f"{count} {name} reactions",
                description=f"Reaction {name} added to message",
                priority=Priority.LOW,
                channel=channel,
                metadata={
                    "original_message_ts": ts,
                    "reaction_name": name,
                    "reaction_count": count,
                    "reaction_users": [str(user) for user in reaction.get("users") or []],
                },
            )
        )
    return events


def extract_mentions(text: str) -> list[str]:
    mentions = _USER_MENTION_RE.findall(text)
    mentions.extend(_CHANNEL_MENTION_RE.findall(text))
    return mentions


def message_priority(text: str, mentions: list[str], *, has_files: bool) -> Priority:
    lowered = text.lower()
    if any(word in lowered for word in URGENT_WORDS):
        return Priority.URGENT
    if len(mentions) > 3 or any(word in lowered for word in BROADCAST_WORDS):
        return Priority.HIGH
    if has_files or mentions or any(word in lowered for word in ATTENTION_WORDS):
        return Priority.MEDIUM
    return Priority.LOW


def message_title(text: str, *, is_thread: bool, has_files: bool) -> str:
    title = _MARKUP_RE.sub("", text).strip()
    if len(title) > MAX_TITLE_CHARS:
        title = title[:MAX_TITLE_CHARS] + "..."
    if is_thread:
        title = f"Thread: {title}"
    if has_files:
        title = f"[file] {title}"
    return title or "Message"
