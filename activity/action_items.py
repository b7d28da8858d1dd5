from __future__ import annotations

import logging

from activity.errors import IntelligenceUnavailable
from activity.intelligence import TextIntelligence
from activity.models import ActionItem, ActionItemKind, Correlation, Event, Priority

logger = logging.getLogger(__name__)

MAX_ACTION_ITEMS = 20
SAMPLE_LIMIT = 30
ESCALATED_PRIORITIES = (Priority.HIGH, Priority.URGENT)


class ActionItemExtractor:
    def __init__(self, intelligence: TextIntelligence | None) -> None:
        self.intelligence = intelligence

    def extract(self, events: list[Event], correlations: list[Correlation]) -> list[ActionItem]:
        sample = [event for event in events if event.priority in ESCALATED_PRIORITIES][:SAMPLE_LIMIT]
        if not sample:
            return []

        try:
            if self.intelligence is None:
                raise IntelligenceUnavailable("no text intelligence configured")
            items = self._classify(sample, events, correlations)
        except IntelligenceUnavailable as exc:
            if self.intelligence is not None and self.intelligence.enabled:
                logger.warning("Action item classification failed, using review rule: %s", exc)
            items = review_requested_items(events)

        return items[:MAX_ACTION_ITEMS]

    def _classify(
        self,
        sample: list[Event],
        events: list[Event],
        correlations: list[Correlation],
    ) -> list[ActionItem]:
        kinds_by_event: dict[str, list[str]] = {}
        for correlation in correlations:
            for event_id in correlation.events:
                kinds = kinds_by_event.setdefault(event_id, [])
                if correlation.kind.value not in kinds:
                    kinds.append(correlation.kind.value)

        summaries = []
        for event in sample:
            summary = event.to_summary()
            summary["correlations"] = kinds_by_event.get(event.id, [])
            summaries.append(summary)

        classified = self.intelligence.classify_action_items(summaries)

        by_id = {event.id: event for event in events}
        items: list[ActionItem] = []
        emitted: set[str] = set()
        for entry in classified:
            origin = by_id.get(entry.event_id)
            if origin is None:
                logger.debug("Dropping action item for unknown event %s", entry.event_id)
                continue
            if entry.event_id in emitted:
                continue
            emitted.add(entry.event_id)
            items.append(
                ActionItem(
                    id=f"action_{origin.id}",
                    kind=entry.kind,
                    title=entry.title or origin.title,
                    priority=entry.priority or origin.priority,
                    created_at=origin.timestamp,
                    platform=origin.platform,
                    description=entry.description,
                    url=origin.url,
                    assignee=entry.assignee,
                    repository=origin.repository,
                    project=origin.project,
                )
            )
        return items


def review_requested_items(events: list[Event]) -> list[ActionItem]:
    items: list[ActionItem] = []
    for event in events:
        if "review_requested" not in event.subtype or event.priority is not Priority.HIGH:
            continue
        reviewers = ", ".join(event.assignees) if event.assignees else "unassigned"
        items.append(
            ActionItem(
                id=f"action_{event.id}",
                kind=ActionItemKind.REVIEW_NEEDED,
                title=f"Review needed: {event.title}",
                priority=Priority.HIGH,
                created_at=event.timestamp,
                platform=event.platform,
                description=f"Review requested from: {reviewers}",
                url=event.url,
                repository=event.repository,
                project=event.project,
            )
        )
    return items


def extract_action_items(
    events: list[Event],
    correlations: list[Correlation],
    intelligence: TextIntelligence | None = None,
) -> list[ActionItem]:
    return ActionItemExtractor(intelligence).extract(events, correlations)
