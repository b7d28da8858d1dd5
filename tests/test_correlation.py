from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from activity.correlation import CorrelationEngine, find_tracker_references
from activity.errors import InvariantViolation
from activity.intelligence import TextIntelligence
from activity.models import Author, Correlation, CorrelationKind, Event, Platform

BASE = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def _event(
    event_id: str,
    platform: Platform,
    *,
    subtype: str = "message_sent",
    title: str = "",
    description: str | None = None,
    minutes: int = 0,
    **extra: Any,
) -> Event:
    return Event(
        id=event_id,
        platform=platform,
        subtype=subtype,
        timestamp=BASE + timedelta(minutes=minutes),
        author=Author(id=f"author_{event_id}", name="Someone"),
        title=title,
        description=description,
        **extra,
    )


class _FakeLLM:
    enabled = True

    def __init__(self, payload: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls = 0

    def complete_json(self, system_prompt: str, user_prompt: str, **_: Any) -> dict[str, Any] | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.payload


def _kinds(correlations: list[Correlation], kind: CorrelationKind) -> list[Correlation]:
    return [item for item in correlations if item.kind is kind]


def test_pr_mentioning_tracker_key_links_to_tracker_issue() -> None:
    pr = _event("gh_pr_1", Platform.GITHUB, subtype="pr_opened", title="Retry uploads", description="fixes TRK-42")
    issue = _event("lin_1", Platform.LINEAR, subtype="issue_created", title="Uploads fail", metadata={"identifier": "TRK-42"})
    unrelated = _event("lin_2", Platform.LINEAR, subtype="issue_created", title="Docs", metadata={"identifier": "TRK-7"})

    correlations = CorrelationEngine().correlate([pr, issue, unrelated])

    [match] = _kinds(correlations, CorrelationKind.CODE_TO_TRACKER)
    assert match.events == ["gh_pr_1", "lin_1"]
    assert match.confidence == 0.8
    assert match.keywords == ["trk-42"]


def test_tracker_url_reference_matches() -> None:
    pr = _event(
        "gh_pr_2",
        Platform.GITHUB,
        subtype="pr_merged",
        title="Login fix",
        description="See https://linear.app/acme/issue/ENG-7/login-crash",
    )
    issue = _event("lin_7", Platform.LINEAR, subtype="issue_updated", metadata={"issue_id": "ENG-7"})

    matches = CorrelationEngine().match_identifiers([pr, issue])

    assert len(matches) == 1
    assert any("linear.app" in keyword for keyword in matches[0].keywords)


def test_non_pr_code_events_are_not_scanned() -> None:
    commit = _event("gh_c", Platform.GITHUB, subtype="commit_pushed", title="fixes TRK-42")
    issue = _event("lin_1", Platform.LINEAR, metadata={"identifier": "TRK-42"})

    assert CorrelationEngine().match_identifiers([commit, issue]) == []


def test_find_tracker_references_dedups() -> None:
    refs = find_tracker_references("ABC-1 and abc-1 and XYZ-22", r"\b[a-z][a-z0-9]+-\d+\b", r"linear\.app/\S+")
    assert refs == ["abc-1", "xyz-22"]


def test_chat_references_link_chat_to_code() -> None:
    chat = _event("slack_1", Platform.SLACK, title="can someone look at #42 please")
    pr = _event("gh_pr_42", Platform.GITHUB, subtype="pr_opened", title="Cache layer", metadata={"pr_number": 42})
    other_pr = _event("gh_pr_43", Platform.GITHUB, subtype="pr_opened", title="Docs", metadata={"pr_number": 43})
    llm = _FakeLLM(
        {
            "references": [
                {"source_id": "slack_1", "reference": "#42", "reference_type": "pr", "confidence": 0.7, "extracted_text": "#42"},
                {"source_id": "slack_1", "reference": "PR 42", "reference_type": "pr", "confidence": 0.6, "extracted_text": "PR 42"},
                {"source_id": "ghost", "reference": "#43", "reference_type": "pr", "confidence": 0.9},
            ]
        }
    )

    engine = CorrelationEngine(TextIntelligence(llm))
    matches = engine.match_chat_references([chat, pr, other_pr])

    assert len(matches) == 1
    assert matches[0].events == ["slack_1", "gh_pr_42"]
    assert matches[0].kind is CorrelationKind.CHAT_TO_CODE
    assert matches[0].confidence == 0.7


def test_commit_reference_matches_sha_prefix() -> None:
    chat = _event("discord_1", Platform.DISCORD, title="reverted 3f2a9c1 last night")
    commit = _event("gh_commit", Platform.GITHUB, subtype="commit_pushed", metadata={"sha": "3f2a9c1d88e0"})
    llm = _FakeLLM(
        {"references": [{"source_id": "discord_1", "reference": "3f2a9c1", "reference_type": "commit", "confidence": 0.9}]}
    )

    matches = CorrelationEngine(TextIntelligence(llm)).match_chat_references([chat, commit])

    assert [item.events for item in matches] == [["discord_1", "gh_commit"]]


def test_intelligence_failure_degrades_to_no_chat_correlations() -> None:
    chat = _event("slack_1", Platform.SLACK, title="see #42")
    pr = _event("gh_pr_42", Platform.GITHUB, subtype="pr_opened", title="Cache", metadata={"pr_number": 42})
    llm = _FakeLLM(error=TimeoutError("slow"))

    correlations = CorrelationEngine(TextIntelligence(llm)).correlate([chat, pr])

    assert llm.calls == 1
    assert _kinds(correlations, CorrelationKind.CHAT_TO_CODE) == []


def test_topic_cluster_across_platforms() -> None:
    events = [
        _event("gh_1", Platform.GITHUB, title="Deployment pipeline broke", minutes=1),
        _event("slack_1", Platform.SLACK, title="deployment is stuck", minutes=2),
        _event("lin_1", Platform.LINEAR, title="Track deployment outage", minutes=3),
    ]

    [topic] = CorrelationEngine().cluster_topics(events)

    assert topic.id == "topic_deployment"
    assert topic.keywords == ["deployment"]
    assert sorted(topic.events) == ["gh_1", "lin_1", "slack_1"]
    assert topic.confidence == pytest.approx(0.3)
    assert "github" in topic.description and "linear" in topic.description


def test_topic_needs_two_platforms() -> None:
    events = [
        _event(f"slack_{index}", Platform.SLACK, title="deployment chatter", minutes=index) for index in range(4)
    ]
    assert CorrelationEngine().cluster_topics(events) == []


def test_topic_pass_is_capped_and_ranked_by_size() -> None:
    words = " ".join(f"keyword{chr(ord('a') + index)}" for index in range(12))
    events = [
        _event("gh_1", Platform.GITHUB, title=words, minutes=1),
        _event("slack_1", Platform.SLACK, title=words, minutes=2),
        _event("slack_2", Platform.SLACK, title=words, minutes=3),
        _event("lin_1", Platform.LINEAR, title="keywordk keywordl", minutes=4),
    ]

    topics = CorrelationEngine().cluster_topics(events)

    assert len(topics) == 10
    assert [topic.id for topic in topics[:2]] == ["topic_keywordk", "topic_keywordl"]
    assert topics[2].id == "topic_keyworda"
    assert all(0.0 <= topic.confidence <= 1.0 for topic in topics)


def test_unknown_event_ids_are_an_invariant_violation() -> None:
    class _BadEngine(CorrelationEngine):
        def cluster_topics(self, events: list[Event]) -> list[Correlation]:
            return [
                Correlation(
                    id="bogus",
                    events=["missing_a", "missing_b"],
                    kind=CorrelationKind.CROSS_PLATFORM_TOPIC,
                    confidence=0.5,
                    description="",
                )
            ]

    with pytest.raises(InvariantViolation):
        _BadEngine().correlate([_event("gh_1", Platform.GITHUB, title="hello")])
