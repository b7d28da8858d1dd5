from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import math
from typing import Any, Protocol

from activity.errors import IntelligenceUnavailable
from activity.models import ActionItemKind, Priority

logger = logging.getLogger(__name__)

REFERENCE_TYPES = ("pr", "issue", "commit", "repository")
MAX_EXPERTISE_AREAS = 5
MAX_RECENT_FOCUS = 3


class JsonCompleter(Protocol):
    enabled: bool

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 900,
    ) -> dict[str, Any] | None: ...


@dataclass(slots=True)
class Reference:
    source_id: str
    reference: str
    reference_type: str
    confidence: float
    extracted_text: str


@dataclass(slots=True)
class ContributorTraits:
    preferred_platforms: list[str] = field(default_factory=list)
    expertise_areas: list[str] = field(default_factory=list)
    recent_focus: list[str] = field(default_factory=list)
    avg_daily_events: float = 0.0


@dataclass(slots=True)
class ClassifiedItem:
    event_id: str
    kind: ActionItemKind
    title: str
    priority: Priority | None = None
    description: str | None = None
    assignee: str | None = None


class TextIntelligence:
    """Structured requests to the language model, validated at the boundary.

    Every method raises IntelligenceUnavailable when the model is disabled, the
    call fails, or the answer cannot be parsed. Callers own the fallback.
    """

    def __init__(self, llm: JsonCompleter | None) -> None:
        self.llm = llm

    @property
    def enabled(self) -> bool:
        return self.llm is not None and bool(self.llm.enabled)

    def extract_references(self, batch: list[dict[str, Any]]) -> list[Reference]:
        if not batch:
            return []
        system_prompt = (
            "You find references to code-review activity inside chat messages. "
            "Look for PR numbers (#123, PR-123, pull request 123), issue numbers "
            "(issue #456, fixes #789), repository names, commit hashes and code-host URLs. "
            "Return strict JSON only."
        )
        user_prompt = (
            "Identify code references in these chat messages.\n"
            "JSON schema:\n"
            "{\n"
            '  "references": [\n'
            '    {"source_id": "...", "reference": "...", '
            '"reference_type": "pr|issue|commit|repository", '
            '"confidence": 0.0, "extracted_text": "..."}\n'
            "  ]\n"
            "}\n\n"
            f"MESSAGES:\n{json.dumps(batch, ensure_ascii=False, indent=2, default=str)}"
        )
        payload = self._request(system_prompt, user_prompt, max_tokens=1500)

        items = payload.get("references")
        if not isinstance(items, list):
            raise IntelligenceUnavailable("reference payload has no 'references' list")

        references: list[Reference] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            source_id = _clean_str(item.get("source_id"))
            reference = _clean_str(item.get("reference"))
            reference_type = (_clean_str(item.get("reference_type")) or "").lower()
            if not source_id or not reference or reference_type not in REFERENCE_TYPES:
                continue
            references.append(
                Reference(
                    source_id=source_id,
                    reference=reference,
                    reference_type=reference_type,
                    confidence=_coerce_confidence(item.get("confidence")),
                    extracted_text=_clean_str(item.get("extracted_text")) or reference,
                )
            )
        return references

    def analyze_contributor(self, name: str, recent_events: list[dict[str, Any]]) -> ContributorTraits:
        system_prompt = (
            "Analyze a contributor's activity patterns and expertise areas based on their "
            "recent activity. Identify preferred platforms, expertise areas and recent focus. "
            f"expertise_areas: at most {MAX_EXPERTISE_AREAS} items. "
            f"recent_focus: at most {MAX_RECENT_FOCUS} items. Return strict JSON only."
        )
        user_prompt = (
            f"Name: {name}\n"
            "JSON schema:\n"
            '{"preferred_platforms": ["..."], "expertise_areas": ["..."], '
            '"recent_focus": ["..."], "avg_daily_events": 0.0}\n\n'
            f"RECENT EVENTS:\n{json.dumps(recent_events[:20], ensure_ascii=False, indent=2, default=str)}"
        )
        payload = self._request(system_prompt, user_prompt, max_tokens=600)

        preferred = _string_list(payload.get("preferred_platforms"))
        if preferred is None:
            raise IntelligenceUnavailable("trait payload has no 'preferred_platforms' list")
        try:
            avg_daily = float(payload.get("avg_daily_events"))
        except (TypeError, ValueError) as exc:
            raise IntelligenceUnavailable("trait payload has no numeric 'avg_daily_events'") from exc

        return ContributorTraits(
            preferred_platforms=preferred,
            expertise_areas=(_string_list(payload.get("expertise_areas")) or [])[:MAX_EXPERTISE_AREAS],
            recent_focus=(_string_list(payload.get("recent_focus")) or [])[:MAX_RECENT_FOCUS],
            avg_daily_events=max(0.0, avg_daily),
        )

    def classify_action_items(self, summaries: list[dict[str, Any]]) -> list[ClassifiedItem]:
        if not summaries:
            return []
        kinds = "|".join(kind.value for kind in ActionItemKind)
        system_prompt = (
            "You identify actionable items in development activity: PRs that need review "
            "(review_needed), blocked or stalled issues (blocked), overdue tasks (overdue) and "
            "items requiring immediate attention (requires_attention). "
            "Omit description or assignee when unknown. Return strict JSON only."
        )
        user_prompt = (
            "JSON schema:\n"
            "{\n"
            '  "action_items": [\n'
            f'    {{"event_id": "...", "kind": "{kinds}", "title": "...", '
            '"description": "...", "priority": "low|medium|high|urgent", "assignee": "..."}\n'
            "  ]\n"
            "}\n\n"
            f"EVENTS:\n{json.dumps(summaries[:30], ensure_ascii=False, indent=2, default=str)}"
        )
        payload = self._request(system_prompt, user_prompt, max_tokens=1500)

        items = payload.get("action_items")
        if not isinstance(items, list):
            raise IntelligenceUnavailable("classification payload has no 'action_items' list")

        classified: list[ClassifiedItem] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            event_id = _clean_str(item.get("event_id"))
            kind = _enum_or_none(ActionItemKind, item.get("kind") or item.get("type"))
            if not event_id or kind is None:
                continue
            classified.append(
                ClassifiedItem(
                    event_id=event_id,
                    kind=kind,
                    title=_clean_str(item.get("title")) or "",
                    priority=_enum_or_none(Priority, item.get("priority")),
                    description=_clean_str(item.get("description")),
                    assignee=_clean_str(item.get("assignee")),
                )
            )
        return classified

    def _request(self, system_prompt: str, user_prompt: str, *, max_tokens: int) -> dict[str, Any]:
        if not self.enabled:
            raise IntelligenceUnavailable("text intelligence is disabled")
        try:
            payload = self.llm.complete_json(system_prompt, user_prompt, max_tokens=max_tokens)
        except Exception as exc:
            logger.debug("Text intelligence call failed", exc_info=True)
            raise IntelligenceUnavailable(f"model call failed: {exc}") from exc
        if not payload:
            raise IntelligenceUnavailable("model returned no JSON object")
        return payload


def _clean_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return None
    return text


def _string_list(value: object) -> list[str] | None:
    if not isinstance(value, list):
        return None
    result: list[str] = []
    for item in value:
        clean = _clean_str(item)
        if clean and clean not in result:
            result.append(clean)
    return result


def _enum_or_none(enum_type, value: object):
    clean = _clean_str(value)
    if clean is None:
        return None
    try:
        return enum_type(clean.lower())
    except ValueError:
        return None


def _coerce_confidence(value: object) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        score = 0.5
    if math.isnan(score):
        score = 0.5
    return max(0.0, min(1.0, score))
