from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from activity.action_items import MAX_ACTION_ITEMS, extract_action_items
from activity.intelligence import TextIntelligence
from activity.models import (
    ActionItemKind,
    Author,
    Correlation,
    CorrelationKind,
    Event,
    Platform,
    Priority,
)

BASE = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def _event(
    event_id: str,
    *,
    subtype: str = "pr_review_requested",
    priority: Priority = Priority.HIGH,
    minutes: int = 0,
    assignees: list[str] | None = None,
) -> Event:
    return Event(
        id=event_id,
        platform=Platform.GITHUB,
        subtype=subtype,
        timestamp=BASE + timedelta(minutes=minutes),
        author=Author(id="alice", name="Alice"),
        title=f"PR {event_id}",
        priority=priority,
        assignees=assignees or [],
        repository="api",
    )


class _ClassifierLLM:
    enabled = True

    def __init__(self, payload: dict[str, Any] | None) -> None:
        self.payload = payload
        self.prompts: list[str] = []

    def complete_json(self, system_prompt: str, user_prompt: str, **_: Any) -> dict[str, Any] | None:
        self.prompts.append(user_prompt)
        return self.payload


def test_no_escalated_events_means_no_items() -> None:
    events = [_event("e1", priority=Priority.MEDIUM), _event("e2", priority=Priority.LOW)]
    assert extract_action_items(events, []) == []


def test_fallback_emits_review_needed_for_high_review_requests() -> None:
    events = [
        _event("e1", assignees=["bob", "carol"]),
        _event("e2", subtype="pr_opened", priority=Priority.URGENT),
        _event("e3", priority=Priority.URGENT),
    ]

    items = extract_action_items(events, [])

    assert [item.id for item in items] == ["action_e1"]
    assert items[0].kind is ActionItemKind.REVIEW_NEEDED
    assert items[0].description == "Review requested from: bob, carol"
    assert items[0].repository == "api"


def test_output_is_capped() -> None:
    events = [_event(f"e{index}", minutes=index) for index in range(25)]
    assert len(extract_action_items(events, [])) == MAX_ACTION_ITEMS


def test_classifier_output_is_validated_against_events() -> None:
    events = [_event("e1"), _event("e2", priority=Priority.URGENT), _event("e3", priority=Priority.LOW)]
    correlations = [
        Correlation(
            id="pr_tracker_e1_lin",
            events=["e1", "lin"],
            kind=CorrelationKind.CODE_TO_TRACKER,
            confidence=0.8,
            description="",
        )
    ]
    llm = _ClassifierLLM(
        {
            "action_items": [
                {"event_id": "e1", "kind": "blocked", "title": "Blocked on infra", "priority": "urgent", "assignee": "null"},
                {"event_id": "e1", "kind": "overdue", "title": "duplicate"},
                {"event_id": "e2", "kind": "requires_attention", "title": "", "priority": "whenever"},
                {"event_id": "ghost", "kind": "blocked", "title": "not in batch"},
                {"event_id": "e3", "kind": "procrastinating", "title": "bad kind"},
            ]
        }
    )

    items = extract_action_items(events, correlations, TextIntelligence(llm))

    assert [item.id for item in items] == ["action_e1", "action_e2"]
    first, second = items
    assert first.kind is ActionItemKind.BLOCKED
    assert first.priority is Priority.URGENT
    assert first.assignee is None
    assert second.title == "PR e2"
    assert second.priority is Priority.URGENT
    assert "code_to_tracker" in llm.prompts[0]
    assert '"e3"' not in llm.prompts[0]


def test_classifier_failure_uses_review_rule() -> None:
    llm = _ClassifierLLM(None)
    items = extract_action_items([_event("e1")], [], TextIntelligence(llm))
    assert [item.kind for item in items] == [ActionItemKind.REVIEW_NEEDED]
