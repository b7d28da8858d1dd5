"""Cross-platform correlation discovery.

Three independent passes, concatenated in order:
- tracker identifiers mentioned in code-review PR events (pattern match)
- code references found in chat messages (text intelligence)
- keywords shared by events on several platforms (inverted index)
"""

from __future__ import annotations

from collections import OrderedDict
import logging
import re
from typing import Iterable

from activity.errors import IntelligenceUnavailable, InvariantViolation
from activity.intelligence import Reference, TextIntelligence
from activity.models import (
    CHAT_PLATFORMS,
    CODE_REVIEW_PLATFORMS,
    TRACKER_PLATFORMS,
    Correlation,
    CorrelationKind,
    Event,
)

logger = logging.getLogger(__name__)

DEFAULT_KEY_PATTERN = r"\b[a-z][a-z0-9]+-\d+\b"
DEFAULT_URL_PATTERN = r"linear\.app/[^\s)>\]]+"
WORD_RE = re.compile(r"\b\w{4,}\b")

IDENTIFIER_CONFIDENCE = 0.8
CHAT_BATCH_LIMIT = 50
TOPIC_LIMIT = 10
TOPIC_MIN_EVENTS = 3
TOPIC_MIN_PLATFORMS = 2
TOPIC_MAX_CONFIDENCE = 0.9
MIN_SHA_PREFIX = 7


def extract_words(text: str) -> list[str]:
    return WORD_RE.findall(text.lower())


def find_tracker_references(text: str, key_pattern: str, url_pattern: str) -> list[str]:
    lowered = text.lower()
    refs: list[str] = []
    for pattern in (key_pattern, url_pattern):
        for match in re.finditer(pattern, lowered, flags=re.IGNORECASE):
            ref = match.group(0)
            if ref not in refs:
                refs.append(ref)
    return refs


def tracker_identifier(event: Event) -> str | None:
    value = event.metadata.get("identifier") or event.metadata.get("issue_id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class CorrelationEngine:
    def __init__(
        self,
        intelligence: TextIntelligence | None = None,
        *,
        key_pattern: str = DEFAULT_KEY_PATTERN,
        url_pattern: str = DEFAULT_URL_PATTERN,
    ) -> None:
        self.intelligence = intelligence
        self.key_pattern = key_pattern
        self.url_pattern = url_pattern

    def correlate(self, events: list[Event]) -> list[Correlation]:
        correlations: list[Correlation] = []
        correlations.extend(self.match_identifiers(events))
        correlations.extend(self.match_chat_references(events))
        correlations.extend(self.cluster_topics(events))

        known_ids = {event.id for event in events}
        for correlation in correlations:
            missing = [event_id for event_id in correlation.events if event_id not in known_ids]
            if missing:
                raise InvariantViolation(
                    f"Correlation {correlation.id} references unknown events {missing}"
                )

        logger.info("Found %d correlation(s) across %d event(s)", len(correlations), len(events))
        return correlations

    def match_identifiers(self, events: list[Event]) -> list[Correlation]:
        code_events = [
            event
            for event in events
            if event.platform in CODE_REVIEW_PLATFORMS and "pr" in event.subtype
        ]
        tracker_events = [event for event in events if event.platform in TRACKER_PLATFORMS]
        if not code_events or not tracker_events:
            return []

        correlations: list[Correlation] = []
        for code_event in code_events:
            refs = find_tracker_references(code_event.text, self.key_pattern, self.url_pattern)
            if not refs:
                continue
            for tracker_event in tracker_events:
                identifier = tracker_identifier(tracker_event)
                matched = _matching_references(refs, identifier, tracker_event.id)
                if not matched:
                    continue
                pr_number = code_event.metadata.get("pr_number")
                label = f"PR {pr_number}" if pr_number is not None else f"PR '{code_event.title}'"
                correlations.append(
                    Correlation(
                        id=f"pr_tracker_{code_event.id}_{tracker_event.id}",
                        events=[code_event.id, tracker_event.id],
                        kind=CorrelationKind.CODE_TO_TRACKER,
                        confidence=IDENTIFIER_CONFIDENCE,
                        description=f"{label} relates to tracker issue {identifier or tracker_event.id}",
                        keywords=matched,
                    )
                )
        return correlations

    def match_chat_references(self, events: list[Event]) -> list[Correlation]:
        if self.intelligence is None:
            return []
        chat_events = [event for event in events if event.platform in CHAT_PLATFORMS][:CHAT_BATCH_LIMIT]
        code_events = [event for event in events if event.platform in CODE_REVIEW_PLATFORMS]
        if not chat_events or not code_events:
            return []

        batch = [
            {"id": event.id, "text": event.text, "timestamp": event.timestamp.isoformat()}
            for event in chat_events
        ]
        try:
            references = self.intelligence.extract_references(batch)
        except IntelligenceUnavailable as exc:
            if self.intelligence.enabled:
                logger.warning("Chat reference extraction unavailable: %s", exc)
            return []

        chat_ids = {event.id for event in chat_events}
        correlations: list[Correlation] = []
        seen_pairs: set[tuple[str, str]] = set()
        for ref in references:
            if ref.source_id not in chat_ids:
                logger.debug("Dropping reference for unknown chat event %s", ref.source_id)
                continue
            for code_event in code_events:
                if not _reference_matches(ref, code_event):
                    continue
                pair = (ref.source_id, code_event.id)
                if pair in seen_pairs:
                    continue
                seen_pairs.add(pair)
                correlations.append(
                    Correlation(
                        id=f"chat_code_{ref.source_id}_{code_event.id}",
                        events=[ref.source_id, code_event.id],
                        kind=CorrelationKind.CHAT_TO_CODE,
                        confidence=ref.confidence,
                        description=f"Chat discussion references {ref.reference_type}: {ref.reference}",
                        keywords=[ref.extracted_text],
                    )
                )
        return correlations

    def cluster_topics(self, events: list[Event]) -> list[Correlation]:
        index: OrderedDict[str, list[Event]] = OrderedDict()
        for event in events:
            for word in OrderedDict.fromkeys(extract_words(event.text)):
                index.setdefault(word, []).append(event)

        clusters: list[tuple[str, list[Event], list[str]]] = []
        for keyword, related in index.items():
            platforms = _distinct_platforms(related)
            if len(platforms) >= TOPIC_MIN_PLATFORMS and len(related) >= TOPIC_MIN_EVENTS:
                clusters.append((keyword, related, platforms))

        # Largest clusters first; sort is stable so first-seen order breaks ties.
        clusters.sort(key=lambda cluster: len(cluster[1]), reverse=True)

        return [
            Correlation(
                id=f"topic_{keyword}",
                events=[event.id for event in related],
                kind=CorrelationKind.CROSS_PLATFORM_TOPIC,
                confidence=min(TOPIC_MAX_CONFIDENCE, len(related) / 10),
                description=(
                    f'Cross-platform discussion about "{keyword}" spanning {", ".join(platforms)}'
                ),
                keywords=[keyword],
            )
            for keyword, related, platforms in clusters[:TOPIC_LIMIT]
        ]


def _matching_references(refs: list[str], identifier: str | None, event_id: str) -> list[str]:
    matched: list[str] = []
    ident = identifier.lower() if identifier else None
    for ref in refs:
        # URL references may carry the event's own id instead of the short code.
        if (ident and ident in ref) or ("/" in ref and event_id.lower() in ref):
            matched.append(ref)
    return matched


def _reference_matches(ref: Reference, code_event: Event) -> bool:
    text = ref.reference.lower()
    if ref.reference_type == "pr":
        number = code_event.metadata.get("pr_number")
        return number is not None and str(number) in text
    if ref.reference_type == "issue":
        number = code_event.metadata.get("issue_number")
        return number is not None and str(number) in text
    if ref.reference_type == "repository":
        repo = code_event.repository
        return bool(repo) and repo.lower() in text
    if ref.reference_type == "commit":
        sha = str(code_event.metadata.get("sha") or "").lower()
        candidate = text.strip()
        return len(sha) >= MIN_SHA_PREFIX and len(candidate) >= MIN_SHA_PREFIX and sha.startswith(candidate)
    return False


def _distinct_platforms(events: Iterable[Event]) -> list[str]:
    platforms: list[str] = []
    for event in events:
        if event.platform.value not in platforms:
            platforms.append(event.platform.value)
    return platforms
