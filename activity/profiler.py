from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
import copy
import logging
from typing import Mapping, Protocol

from activity.errors import IntelligenceUnavailable, InvariantViolation
from activity.intelligence import MAX_EXPERTISE_AREAS, MAX_RECENT_FOCUS, TextIntelligence
from activity.models import ActivityPatterns, ContributorProfile, Event

logger = logging.getLogger(__name__)

RECENT_EVENT_LIMIT = 20
FALLBACK_PLATFORM_COUNT = 3


class ProfileRecall(Protocol):
    def recall_profile(self, contributor_id: str) -> ContributorProfile | None: ...


def build_profiles(
    events: list[Event],
    prior_profiles: Mapping[str, ContributorProfile | None],
    intelligence: TextIntelligence | None = None,
    *,
    max_workers: int = 4,
) -> list[ContributorProfile]:
    """Merge this batch's activity into per-author profiles.

    Prior profiles are copied, never mutated. Trait analysis is delegated to the
    text intelligence; when that fails the platform ranking and event count of
    this batch are used instead.
    """
    profiles: dict[str, ContributorProfile] = {}
    events_by_author: dict[str, list[Event]] = {}

    for event in events:
        author = event.author
        if author.is_system:
            continue
        profile = profiles.get(author.id)
        if profile is None:
            prior = prior_profiles.get(author.id)
            profile = copy.deepcopy(prior) if prior is not None else _empty_profile(author.id, author.name)
            profiles[author.id] = profile
            events_by_author[author.id] = []

        profile.platforms[event.platform.value] = author.id
        hour = event.timestamp.hour
        if hour not in profile.activity_patterns.most_active_hours:
            profile.activity_patterns.most_active_hours.append(hour)
        events_by_author[author.id].append(event)

    for profile in profiles.values():
        profile.activity_patterns.most_active_hours.sort()

    if not profiles:
        return []

    author_ids = list(profiles)
    workers = max(1, min(max_workers, len(author_ids)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        list(
            executor.map(
                lambda author_id: _apply_traits(
                    profiles[author_id], _author_events(events_by_author, author_id), intelligence
                ),
                author_ids,
            )
        )

    return [profiles[author_id] for author_id in author_ids]


class ContributorProfiler:
    def __init__(
        self,
        intelligence: TextIntelligence | None,
        memory: ProfileRecall | None = None,
        *,
        max_workers: int = 4,
    ) -> None:
        self.intelligence = intelligence
        self.memory = memory
        self.max_workers = max_workers

    def build(self, events: list[Event]) -> list[ContributorProfile]:
        priors: dict[str, ContributorProfile | None] = {}
        if self.memory is not None:
            for event in events:
                author_id = event.author.id
                if author_id in priors or event.author.is_system:
                    continue
                priors[author_id] = self.memory.recall_profile(author_id)
        return build_profiles(events, priors, self.intelligence, max_workers=self.max_workers)


def _empty_profile(author_id: str, name: str) -> ContributorProfile:
    return ContributorProfile(id=author_id, name=name, activity_patterns=ActivityPatterns())


def _apply_traits(
    profile: ContributorProfile,
    author_events: list[Event],
    intelligence: TextIntelligence | None,
) -> ContributorProfile:
    patterns = profile.activity_patterns
    try:
        if intelligence is None:
            raise IntelligenceUnavailable("no text intelligence configured")
        traits = intelligence.analyze_contributor(
            profile.name,
            [_compact(event) for event in author_events[:RECENT_EVENT_LIMIT]],
        )
    except IntelligenceUnavailable as exc:
        if intelligence is not None and intelligence.enabled:
            logger.warning("Trait analysis failed for %s, using batch counts: %s", profile.id, exc)
        counts = Counter(event.platform.value for event in author_events)
        patterns.preferred_platforms = [
            platform for platform, _count in counts.most_common(FALLBACK_PLATFORM_COUNT)
        ]
        patterns.avg_daily_events = float(len(author_events))
    else:
        patterns.preferred_platforms = traits.preferred_platforms
        patterns.avg_daily_events = traits.avg_daily_events
        profile.expertise_areas = traits.expertise_areas
        profile.recent_focus = traits.recent_focus

    profile.expertise_areas = profile.expertise_areas[:MAX_EXPERTISE_AREAS]
    profile.recent_focus = profile.recent_focus[:MAX_RECENT_FOCUS]
    return profile


def _compact(event: Event) -> dict[str, object]:
    return {
        "platform": event.platform.value,
        "subtype": event.subtype,
        "title": event.title,
        "repository": event.repository,
        "project": event.project,
        "labels": list(event.labels),
    }


def _author_events(events_by_author: dict[str, list[Event]], author_id: str) -> list[Event]:
    author_events = events_by_author.get(author_id)
    if not author_events:
        raise InvariantViolation(f"No accumulated events for profiled author {author_id}")
    return author_events
