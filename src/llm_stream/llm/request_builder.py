"""Turn a ``Prompt`` into the HTTP request for a provider's wire shape.

Everything here is pure: no I/O, no clock, no randomness.  The payload
shape is picked by ``WireApi`` tag; provider quirks are a table of
``(predicate, patch)`` rules applied after the payload is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from llm_stream.config import ProviderSpec, WireApi
from llm_stream.errors import EmptyInputError
from llm_stream.types import Prompt, ResponseItem

from .models import ModelFamily, model_family

_logger = logging.getLogger(__name__)

ENDPOINT_PATHS: dict[WireApi, str] = {
    WireApi.RESPONSES: "responses",
    WireApi.CHAT: "chat/completions",
}


@dataclass(frozen=True)
class BuiltRequest:
    url: str
    headers: dict[str, str]
    json: dict[str, Any]


@dataclass(frozen=True)
class RequestSettings:
    """Per-client knobs that shape the payload."""

    model: str
    family: ModelFamily | None = None
    reasoning_effort: str | None = None
    reasoning_summary: str | None = None
    verbosity: str | None = None
    conversation_id: str | None = None

    @property
    def resolved_family(self) -> ModelFamily:
        return self.family or model_family(self.model)


# ---------------------------------------------------------------------------
# Responses payload
# ---------------------------------------------------------------------------

def _reasoning_param(settings: RequestSettings) -> dict[str, Any] | None:
    if not settings.resolved_family.supports_reasoning_summaries:
        return None
    reasoning: dict[str, Any] = {"effort": settings.reasoning_effort or "medium"}
    summary = settings.reasoning_summary or "auto"
    if summary != "none":
        reasoning["summary"] = summary
    return reasoning


def _text_param(prompt: Prompt, settings: RequestSettings) -> dict[str, Any] | None:
    text: dict[str, Any] = {}
    if settings.verbosity:
        text["verbosity"] = settings.verbosity
    if prompt.output_schema is not None:
        text["format"] = {
            "type": "json_schema",
            "name": "output",
            "strict": True,
            "schema": prompt.output_schema,
        }
    return text or None


def _responses_payload(
    prompt: Prompt, instructions: str, settings: RequestSettings,
) -> dict[str, Any]:
    reasoning = _reasoning_param(settings)
    payload: dict[str, Any] = {
        "model": settings.model,
        "instructions": instructions,
        "input": [item.to_dict() for item in prompt.input],
        "tools": [tool.to_responses_schema() for tool in prompt.tools],
        "tool_choice": "auto",
        "parallel_tool_calls": False,
        "store": False,
        "stream": True,
        "include": ["reasoning.encrypted_content"] if reasoning else [],
    }
    if reasoning is not None:
        payload["reasoning"] = reasoning
    if settings.conversation_id:
        payload["prompt_cache_key"] = settings.conversation_id
    text = _text_param(prompt, settings)
    if text is not None:
        payload["text"] = text
    return payload


# ---------------------------------------------------------------------------
# Chat Completions payload
# ---------------------------------------------------------------------------

def _chat_messages(items: tuple[ResponseItem, ...], instructions: str) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = [{"role": "system", "content": instructions}]
    for item in items:
        if item.type == "message":
            messages.append({"role": item.role or "user", "content": item.text})
        elif item.type == "function_call":
            call = {
                "id": item.call_id or "",
                "type": "function",
                "function": {"name": item.name or "", "arguments": item.arguments or ""},
            }
            prev = messages[-1]
            # Consecutive calls belong to the same assistant turn.
            if prev["role"] == "assistant" and "tool_calls" in prev:
                prev["tool_calls"].append(call)
            else:
                messages.append({"role": "assistant", "content": None, "tool_calls": [call]})
        elif item.type == "function_call_output":
            messages.append({
                "role": "tool",
                "tool_call_id": item.call_id or "",
                "content": item.output or "",
            })
        else:
            _logger.debug("Dropping %s item from chat messages", item.type)
    return messages


def _chat_payload(
    prompt: Prompt, instructions: str, settings: RequestSettings,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": settings.model,
        "messages": _chat_messages(prompt.input, instructions),
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if prompt.tools:
        payload["tools"] = [tool.to_chat_schema() for tool in prompt.tools]
    if prompt.output_schema is not None:
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {"name": "output", "strict": True, "schema": prompt.output_schema},
        }
    return payload


PayloadBuilder = Callable[[Prompt, str, RequestSettings], dict[str, Any]]

PAYLOAD_BUILDERS: dict[WireApi, PayloadBuilder] = {
    WireApi.RESPONSES: _responses_payload,
    WireApi.CHAT: _chat_payload,
}


# ---------------------------------------------------------------------------
# Quirks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QuirkRule:
    name: str
    applies: Callable[[ProviderSpec], bool]
    patch: dict[str, Any] = field(default_factory=dict)


QUIRK_RULES: tuple[QuirkRule, ...] = (
    QuirkRule(
        name="azure-responses-store",
        applies=ProviderSpec.is_azure_responses_endpoint,
        patch={"store": True},
    ),
)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class RequestBuilder:
    """Builds ``BuiltRequest`` objects for one provider."""

    def __init__(self, provider: ProviderSpec, quirks: tuple[QuirkRule, ...] = QUIRK_RULES) -> None:
        self.provider = provider
        self._payload_builder = PAYLOAD_BUILDERS[provider.wire_api]
        self._quirks = tuple(rule for rule in quirks if rule.applies(provider))

    def build(self, prompt: Prompt, settings: RequestSettings) -> BuiltRequest:
        if not prompt.input:
            raise EmptyInputError()
        instructions = prompt.base_instructions_override or settings.resolved_family.instructions
        payload = self._payload_builder(prompt, instructions, settings)
        for rule in self._quirks:
            payload.update(rule.patch)
        return BuiltRequest(
            url=self.provider.url_for(ENDPOINT_PATHS[self.provider.wire_api]),
            headers=self.headers(settings),
            json=payload,
        )

    def headers(self, settings: RequestSettings) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        api_key = self.provider.resolve_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if self.provider.organization:
            headers["OpenAI-Organization"] = self.provider.organization
        if self.provider.wire_api is WireApi.RESPONSES:
            headers["OpenAI-Beta"] = "responses=experimental"
        if settings.conversation_id:
            headers["conversation_id"] = settings.conversation_id
            headers["session_id"] = settings.conversation_id
        headers.update(self.provider.http_headers)
        headers.update(self.provider.resolve_env_headers())
        return headers
