from __future__ import annotations

from collections import Counter
from typing import Iterable

from activity.correlation import extract_words
from activity.models import Event, SummaryStats, TrendingTopic

TOP_TOPICS = 10
MIN_TOPIC_FREQUENCY = 3


def scan_events(events: Iterable[Event]) -> tuple[list[TrendingTopic], SummaryStats]:
    """Compute trending keywords and summary statistics in a single traversal."""
    frequencies: Counter[str] = Counter()
    contexts: dict[str, list[str]] = {}

    total = 0
    by_platform: Counter[str] = Counter()
    by_subtype: Counter[str] = Counter()
    authors: set[str] = set()
    repositories: set[str] = set()
    projects: set[str] = set()

    for event in events:
        total += 1
        platform = event.platform.value
        by_platform[platform] += 1
        if event.subtype:
            by_subtype[event.subtype] += 1
        if not event.author.is_system:
            authors.add(event.author.id)
        if event.repository:
            repositories.add(event.repository)
        if event.project:
            projects.add(event.project)

        for word in extract_words(event.text):
            frequencies[word] += 1
            seen = contexts.setdefault(word, [])
            if platform not in seen:
                seen.append(platform)

    # Counter.most_common keeps insertion order for equal counts.
    trending = [
        TrendingTopic(keyword=word, frequency=count, contexts=list(contexts[word]))
        for word, count in frequencies.most_common()
        if count >= MIN_TOPIC_FREQUENCY
    ][:TOP_TOPICS]

    stats = SummaryStats(
        total_events=total,
        events_by_platform=dict(by_platform),
        events_by_subtype=dict(by_subtype),
        unique_contributors=len(authors),
        repositories_active=len(repositories),
        projects_active=len(projects),
    )
    return trending, stats


def extract_trends(events: Iterable[Event]) -> list[TrendingTopic]:
    trending, _stats = scan_events(events)
    return trending


def summarize_events(events: Iterable[Event]) -> SummaryStats:
    _trending, stats = scan_events(events)
    return stats
