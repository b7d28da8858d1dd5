from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
from openai import BadRequestError

from activity.llm_client import ChatCompletionLLM, first_json_object
from config.settings import Settings


def _settings(api_key: str = "") -> Settings:
    root = Path("/tmp/activity-monitor")
    return Settings(
        project_root=root,
        data_dir=root / "data",
        events_dir=root / "data" / "events",
        memory_dir=root / "data" / "memory",
        memory_db_path=root / "data" / "memory" / "activity.db",
        llm_api_key=api_key,
        llm_base_url="https://example.invalid/v1",
        model_name="test-model",
        model_temperature=0.1,
        llm_timeout_seconds=5.0,
        llm_max_retries=0,
        max_workers=2,
        memory_window_days=7,
        tracker_key_pattern=r"\b[a-z][a-z0-9]+-\d+\b",
        tracker_url_pattern=r"linear\.app/\S+",
    )


class _Completions:
    def __init__(self, replies: list[str], *, reject_json_mode: bool = False) -> None:
        self.replies = replies
        self.reject_json_mode = reject_json_mode
        self.requests: list[dict[str, Any]] = []

    def create(self, **request: Any) -> SimpleNamespace:
        self.requests.append(request)
        if self.reject_json_mode and "response_format" in request:
            response = httpx.Response(400, request=httpx.Request("POST", "https://example.invalid/v1/chat/completions"))
            raise BadRequestError("response_format is not supported", response=response, body=None)
        content = self.replies.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _client(completions: _Completions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_requests_json_mode() -> None:
    completions = _Completions(['{"references": []}'])
    llm = ChatCompletionLLM(_settings(), client=_client(completions))  # type: ignore[arg-type]

    assert llm.complete_json("system", "user", max_tokens=100) == {"references": []}
    [request] = completions.requests
    assert request["response_format"] == {"type": "json_object"}
    assert request["model"] == "test-model"
    assert request["temperature"] == 0.1


def test_rejected_json_mode_falls_back_to_plain_replies() -> None:
    completions = _Completions(
        ['Here is the analysis:\n```json\n{"action_items": []}\n```', '{"ok": true}'],
        reject_json_mode=True,
    )
    llm = ChatCompletionLLM(_settings(), client=_client(completions))  # type: ignore[arg-type]

    assert llm.complete_json("system", "user") == {"action_items": []}
    assert llm.complete_json("system", "user") == {"ok": True}
    assert ["response_format" in request for request in completions.requests] == [True, False, False]


def test_missing_key_disables_client() -> None:
    llm = ChatCompletionLLM(_settings())
    assert not llm.enabled
    assert llm.client is None


def test_first_json_object_skips_prose_and_broken_braces() -> None:
    assert first_json_object('Sure! {"a": 1} hope that helps') == {"a": 1}
    assert first_json_object('{oops} then {"b": [1, 2]}') == {"b": [1, 2]}
    assert first_json_object("[1, 2]") is None
    assert first_json_object("") is None
