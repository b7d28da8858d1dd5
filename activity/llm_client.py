from __future__ import annotations

import json
import logging
from typing import Any

from openai import BadRequestError, OpenAI

from config.settings import Settings

logger = logging.getLogger(__name__)

_DECODER = json.JSONDecoder()


class ChatCompletionLLM:
    """JSON-object requests against an OpenAI-compatible chat endpoint.

    JSON mode is requested first. Endpoints or models that reject
    ``response_format`` are remembered and asked again in plain mode, where the
    first JSON object in the reply is taken.
    """

    def __init__(self, settings: Settings, client: OpenAI | None = None) -> None:
        self.model_name = settings.model_name
        self.temperature = settings.model_temperature
        self.enabled = bool(settings.llm_api_key) or client is not None
        self.json_mode = True
        self.client = client
        if self.client is None and settings.llm_api_key:
            self.client = OpenAI(
                api_key=settings.llm_api_key,
                base_url=settings.llm_base_url,
                timeout=settings.llm_timeout_seconds,
                max_retries=settings.llm_max_retries,
            )

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int = 900,
    ) -> dict[str, Any] | None:
        if self.client is None:
            raise RuntimeError("LLM_API_KEY is missing. Cannot call model.")

        request: dict[str, Any] = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens,
        }
        if self.json_mode:
            try:
                response = self.client.chat.completions.create(
                    response_format={"type": "json_object"}, **request
                )
            except BadRequestError as exc:
                logger.info("JSON mode rejected by %s, falling back to plain replies: %s", self.model_name, exc)
                self.json_mode = False
            else:
                return first_json_object(response.choices[0].message.content or "")

        response = self.client.chat.completions.create(**request)
        return first_json_object(response.choices[0].message.content or "")


def first_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object in ``text``, skipping any prose or code fences around it."""
    start = text.find("{")
    while start != -1:
        try:
            parsed, _end = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        return parsed
    return None
