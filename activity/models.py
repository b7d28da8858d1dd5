from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Union


class Platform(str, Enum):
    GITHUB = "github"
    SLACK = "slack"
    LINEAR = "linear"
    DISCORD = "discord"


CODE_REVIEW_PLATFORMS = frozenset({Platform.GITHUB})
TRACKER_PLATFORMS = frozenset({Platform.LINEAR})
CHAT_PLATFORMS = frozenset({Platform.SLACK, Platform.DISCORD})


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class EventStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    PENDING = "pending"
    MERGED = "merged"
    DRAFT = "draft"


class CorrelationKind(str, Enum):
    CODE_TO_TRACKER = "code_to_tracker"
    CHAT_TO_CODE = "chat_to_code"
    CROSS_PLATFORM_TOPIC = "cross_platform_topic"


class ActionItemKind(str, Enum):
    REVIEW_NEEDED = "review_needed"
    BLOCKED = "blocked"
    OVERDUE = "overdue"
    REQUIRES_ATTENTION = "requires_attention"


# Platform-specific metadata is restricted to JSON-like values.
MetadataValue = Union[str, int, float, bool, None, list["MetadataValue"], dict[str, "MetadataValue"]]

SYSTEM_AUTHOR_PREFIX = "system:"


@dataclass(slots=True)
class Author:
    id: str
    name: str
    email: str | None = None
    avatar: str | None = None

    @property
    def is_system(self) -> bool:
        return self.id.startswith(SYSTEM_AUTHOR_PREFIX)


@dataclass(slots=True)
class Event:
    id: str
    platform: Platform
    subtype: str
    timestamp: datetime
    author: Author
    title: str
    description: str | None = None
    url: str | None = None
    priority: Priority = Priority.MEDIUM
    status: EventStatus | None = None
    labels: list[str] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    repository: str | None = None
    project: str | None = None
    channel: str | None = None
    metadata: dict[str, MetadataValue] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return f"{self.title} {self.description or ''}"

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform.value,
            "subtype": self.subtype,
            "title": self.title,
            "priority": self.priority.value,
            "status": self.status.value if self.status else None,
            "assignees": list(self.assignees),
            "labels": list(self.labels),
            "repository": self.repository,
            "project": self.project,
            "url": self.url,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class Correlation:
    id: str
    events: list[str]
    kind: CorrelationKind
    confidence: float
    description: str
    keywords: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ActivityPatterns:
    most_active_hours: list[int] = field(default_factory=list)
    preferred_platforms: list[str] = field(default_factory=list)
    avg_daily_events: float = 0.0


@dataclass(slots=True)
class ContributorProfile:
    id: str
    name: str
    platforms: dict[str, str] = field(default_factory=dict)
    activity_patterns: ActivityPatterns = field(default_factory=ActivityPatterns)
    expertise_areas: list[str] = field(default_factory=list)
    recent_focus: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ActionItem:
    id: str
    kind: ActionItemKind
    title: str
    priority: Priority
    created_at: datetime
    platform: Platform
    description: str | None = None
    url: str | None = None
    assignee: str | None = None
    repository: str | None = None
    project: str | None = None


@dataclass(slots=True)
class TrendingTopic:
    keyword: str
    frequency: int
    contexts: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SummaryStats:
    total_events: int = 0
    events_by_platform: dict[str, int] = field(default_factory=dict)
    events_by_subtype: dict[str, int] = field(default_factory=dict)
    unique_contributors: int = 0
    repositories_active: int = 0
    projects_active: int = 0


@dataclass(slots=True)
class ProcessedData:
    events: list[Event]
    correlations: list[Correlation]
    contributors: list[ContributorProfile]
    action_items: list[ActionItem]
    summary_stats: SummaryStats
    trending_topics: list[TrendingTopic] = field(default_factory=list)


@dataclass(slots=True)
class VelocityMetrics:
    daily_pr_count: int = 0
    daily_issue_count: int = 0
    avg_review_time_hours: float = 0.0
    deployment_frequency: int = 0


@dataclass(slots=True)
class ActionItemHistoryEntry:
    date: str
    resolved_count: int
    new_count: int
    overdue_count: int


@dataclass(slots=True)
class MemoryContext:
    date: str
    contributor_profiles: dict[str, ContributorProfile] = field(default_factory=dict)
    project_relationships: dict[str, list[str]] = field(default_factory=dict)
    trending_topics: list[TrendingTopic] = field(default_factory=list)
    velocity_metrics: VelocityMetrics = field(default_factory=VelocityMetrics)
    action_items_history: list[ActionItemHistoryEntry] = field(default_factory=list)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def coerce_metadata(raw: object) -> dict[str, MetadataValue]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(key): _coerce_metadata_value(value) for key, value in raw.items()}


def _coerce_metadata_value(value: object) -> MetadataValue:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, Enum):
        return _coerce_metadata_value(value.value)
    if isinstance(value, Mapping):
        return {str(key): _coerce_metadata_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_coerce_metadata_value(item) for item in value]
    return str(value)


def unique_strings(values: object) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    seen: set[str] = set()
    result: list[str] = []
    for item in values:  # type: ignore[union-attr]
        if item is None:
            continue
        clean = str(item)
        if clean in seen:
            continue
        seen.add(clean)
        result.append(clean)
    return result


def event_from_dict(raw: Mapping[str, Any]) -> Event:
    """Build an Event from an exported mapping. Raises ValueError on malformed input."""
    if not isinstance(raw, Mapping):
        raise ValueError(f"Event payload must be a mapping, got {type(raw).__name__}")

    event_id = raw.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise ValueError("Event is missing a string id")

    platform_raw = raw.get("platform", raw.get("type"))
    try:
        platform = Platform(str(platform_raw).lower())
    except ValueError as exc:
        raise ValueError(f"Event {event_id} has unknown platform {platform_raw!r}") from exc

    author_raw = raw.get("author")
    if not isinstance(author_raw, Mapping) or not author_raw.get("id"):
        raise ValueError(f"Event {event_id} is missing an author id")
    author = Author(
        id=str(author_raw["id"]),
        name=str(author_raw.get("name") or author_raw["id"]),
        email=_optional_str(author_raw.get("email")),
        avatar=_optional_str(author_raw.get("avatar")),
    )

    priority_raw = raw.get("priority") or Priority.MEDIUM.value
    status_raw = raw.get("status")
    try:
        priority = Priority(str(priority_raw).lower())
        status = EventStatus(str(status_raw).lower()) if status_raw else None
    except ValueError as exc:
        raise ValueError(f"Event {event_id} has an invalid priority or status") from exc

    return Event(
        id=event_id,
        platform=platform,
        subtype=str(raw.get("subtype") or ""),
        timestamp=parse_timestamp(raw.get("timestamp")),
        author=author,
        title=str(raw.get("title") or ""),
        description=_optional_str(raw.get("description")),
        url=_optional_str(raw.get("url")),
        priority=priority,
        status=status,
        labels=unique_strings(raw.get("labels")),
        assignees=unique_strings(raw.get("assignees")),
        repository=_optional_str(raw.get("repository")),
        project=_optional_str(raw.get("project")),
        channel=_optional_str(raw.get("channel")),
        metadata=coerce_metadata(raw.get("metadata")),
    )


def event_to_dict(event: Event) -> dict[str, Any]:
    return {
        "id": event.id,
        "platform": event.platform.value,
        "subtype": event.subtype,
        "timestamp": event.timestamp.isoformat(),
        "author": {
            "id": event.author.id,
            "name": event.author.name,
            "email": event.author.email,
            "avatar": event.author.avatar,
        },
        "title": event.title,
        "description": event.description,
        "url": event.url,
        "priority": event.priority.value,
        "status": event.status.value if event.status else None,
        "labels": list(event.labels),
        "assignees": list(event.assignees),
        "repository": event.repository,
        "project": event.project,
        "channel": event.channel,
        "metadata": dict(event.metadata),
    }


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None
