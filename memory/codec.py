"""JSON encoding of persisted memory payloads with strict shape checks on decode."""

from __future__ import annotations

import json
from typing import Any, Mapping

from activity.errors import MemorySchemaError
from activity.intelligence import MAX_EXPERTISE_AREAS, MAX_RECENT_FOCUS
from activity.models import (
    ActionItemHistoryEntry,
    ActivityPatterns,
    ContributorProfile,
    MemoryContext,
    TrendingTopic,
    VelocityMetrics,
)


def profile_to_dict(profile: ContributorProfile) -> dict[str, Any]:
    return {
        "id": profile.id,
        "name": profile.name,
        "platforms": dict(profile.platforms),
        "activity_patterns": {
            "most_active_hours": sorted(set(profile.activity_patterns.most_active_hours)),
            "preferred_platforms": list(profile.activity_patterns.preferred_platforms),
            "avg_daily_events": float(profile.activity_patterns.avg_daily_events),
        },
        "expertise_areas": list(profile.expertise_areas[:MAX_EXPERTISE_AREAS]),
        "recent_focus": list(profile.recent_focus[:MAX_RECENT_FOCUS]),
    }


def context_to_dict(context: MemoryContext) -> dict[str, Any]:
    return {
        "date": context.date,
        "contributor_profiles": {
            profile_id: profile_to_dict(profile)
            for profile_id, profile in context.contributor_profiles.items()
        },
        "project_relationships": {
            key: list(values) for key, values in context.project_relationships.items()
        },
        "trending_topics": [
            {"keyword": topic.keyword, "frequency": topic.frequency, "contexts": list(topic.contexts)}
            for topic in context.trending_topics
        ],
        "velocity_metrics": {
            "daily_pr_count": context.velocity_metrics.daily_pr_count,
            "daily_issue_count": context.velocity_metrics.daily_issue_count,
            "avg_review_time_hours": context.velocity_metrics.avg_review_time_hours,
            "deployment_frequency": context.velocity_metrics.deployment_frequency,
        },
        "action_items_history": [
            {
                "date": entry.date,
                "resolved_count": entry.resolved_count,
                "new_count": entry.new_count,
                "overdue_count": entry.overdue_count,
            }
            for entry in context.action_items_history
        ],
    }


def encode_context(context: MemoryContext) -> str:
    return json.dumps(context_to_dict(context), ensure_ascii=False)


def decode_context(key: str, raw: str) -> MemoryContext:
    data = _load_object(key, raw)
    checker = _Checker(key)

    profiles_raw = checker.mapping(data, "contributor_profiles")
    profiles = {
        str(profile_id): profile_from_dict(key, checker.as_mapping(value, f"contributor_profiles.{profile_id}"))
        for profile_id, value in profiles_raw.items()
    }

    relationships: dict[str, list[str]] = {}
    for rel_key, values in checker.mapping(data, "project_relationships").items():
        relationships[str(rel_key)] = checker.as_string_list(values, f"project_relationships.{rel_key}")

    topics: list[TrendingTopic] = []
    for index, item in enumerate(checker.sequence(data, "trending_topics")):
        item = checker.as_mapping(item, f"trending_topics[{index}]")
        topics.append(
            TrendingTopic(
                keyword=checker.string(item, "keyword"),
                frequency=checker.integer(item, "frequency"),
                contexts=checker.as_string_list(item.get("contexts"), "contexts"),
            )
        )

    velocity_raw = checker.mapping(data, "velocity_metrics")
    velocity = VelocityMetrics(
        daily_pr_count=checker.integer(velocity_raw, "daily_pr_count"),
        daily_issue_count=checker.integer(velocity_raw, "daily_issue_count"),
        avg_review_time_hours=checker.number(velocity_raw, "avg_review_time_hours"),
        deployment_frequency=checker.integer(velocity_raw, "deployment_frequency"),
    )

    history: list[ActionItemHistoryEntry] = []
    for index, item in enumerate(checker.sequence(data, "action_items_history")):
        item = checker.as_mapping(item, f"action_items_history[{index}]")
        history.append(
            ActionItemHistoryEntry(
                date=checker.string(item, "date"),
                resolved_count=checker.integer(item, "resolved_count"),
                new_count=checker.integer(item, "new_count"),
                overdue_count=checker.integer(item, "overdue_count"),
            )
        )

    return MemoryContext(
        date=checker.string(data, "date"),
        contributor_profiles=profiles,
        project_relationships=relationships,
        trending_topics=topics,
        velocity_metrics=velocity,
        action_items_history=history,
    )


def profile_from_dict(key: str, data: Mapping[str, Any]) -> ContributorProfile:
    checker = _Checker(key)
    patterns_raw = checker.mapping(data, "activity_patterns")
    hours = checker.as_int_list(patterns_raw.get("most_active_hours"), "most_active_hours")
    if any(hour < 0 or hour > 23 for hour in hours):
        raise MemorySchemaError(key, "most_active_hours outside 0-23")

    platforms_raw = checker.mapping(data, "platforms")
    expertise = checker.as_string_list(data.get("expertise_areas", []), "expertise_areas")
    focus = checker.as_string_list(data.get("recent_focus", []), "recent_focus")
    if len(expertise) > MAX_EXPERTISE_AREAS or len(focus) > MAX_RECENT_FOCUS:
        raise MemorySchemaError(key, "profile list caps exceeded")

    return ContributorProfile(
        id=checker.string(data, "id"),
        name=checker.string(data, "name"),
        platforms={str(platform): str(handle) for platform, handle in platforms_raw.items()},
        activity_patterns=ActivityPatterns(
            most_active_hours=hours,
            preferred_platforms=checker.as_string_list(
                patterns_raw.get("preferred_platforms"), "preferred_platforms"
            ),
            avg_daily_events=checker.number(patterns_raw, "avg_daily_events"),
        ),
        expertise_areas=expertise,
        recent_focus=focus,
    )


def encode_report(report: Mapping[str, Any]) -> str:
    return json.dumps(dict(report), ensure_ascii=False, default=str)


def decode_report(key: str, raw: str) -> dict[str, Any]:
    data = _load_object(key, raw)
    _Checker(key).string(data, "date")
    return data


def _load_object(key: str, raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise MemorySchemaError(key, f"not valid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise MemorySchemaError(key, f"expected an object, got {type(data).__name__}")
    return data


class _Checker:
    def __init__(self, key: str) -> None:
        self.key = key

    def fail(self, reason: str) -> MemorySchemaError:
        return MemorySchemaError(self.key, reason)

    def as_mapping(self, value: object, name: str) -> Mapping[str, Any]:
        if not isinstance(value, Mapping):
            raise self.fail(f"{name} must be an object")
        return value

    def mapping(self, data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
        if name not in data:
            raise self.fail(f"missing {name}")
        return self.as_mapping(data[name], name)

    def sequence(self, data: Mapping[str, Any], name: str) -> list[Any]:
        value = data.get(name)
        if not isinstance(value, list):
            raise self.fail(f"{name} must be a list")
        return value

    def string(self, data: Mapping[str, Any], name: str) -> str:
        value = data.get(name)
        if not isinstance(value, str):
            raise self.fail(f"{name} must be a string")
        return value

    def number(self, data: Mapping[str, Any], name: str) -> float:
        value = data.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self.fail(f"{name} must be a number")
        return float(value)

    def integer(self, data: Mapping[str, Any], name: str) -> int:
        value = self.number(data, name)
        if not value.is_integer():
            raise self.fail(f"{name} must be an integer")
        return int(value)

    def as_string_list(self, value: object, name: str) -> list[str]:
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise self.fail(f"{name} must be a list of strings")
        return list(value)

    def as_int_list(self, value: object, name: str) -> list[int]:
        if not isinstance(value, list) or not all(
            isinstance(item, int) and not isinstance(item, bool) for item in value
        ):
            raise self.fail(f"{name} must be a list of integers")
        return list(value)
