"""Shared data types for llm-stream."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union


# ---------------------------------------------------------------------------
# Conversation items
# ---------------------------------------------------------------------------

ITEM_TYPES = (
    "message",
    "reasoning",
    "function_call",
    "function_call_output",
    "web_search_call",
    "local_shell_call",
    "custom_tool_call",
)

_ITEM_FIELDS = ("id", "role", "content", "call_id", "name", "arguments", "output")


@dataclass(frozen=True)
class ResponseItem:
    """A single conversation item, as sent to or received from a provider.

    Fields the item type does not use stay ``None``.  Anything the provider
    sends that is not modelled here is kept in ``extra`` so it round-trips.
    """

    type: str
    id: str | None = None
    role: str | None = None
    content: str | list[dict[str, Any]] | None = None
    call_id: str | None = None
    name: str | None = None
    arguments: str | None = None
    output: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def user(cls, text: str) -> ResponseItem:
        return cls(type="message", role="user", content=[{"type": "input_text", "text": text}])

    @classmethod
    def system(cls, text: str) -> ResponseItem:
        return cls(type="message", role="system", content=[{"type": "input_text", "text": text}])

    @classmethod
    def assistant(cls, text: str) -> ResponseItem:
        return cls(
            type="message", role="assistant",
            content=[{"type": "output_text", "text": text}],
        )

    @classmethod
    def function_output(cls, call_id: str, output: str) -> ResponseItem:
        return cls(type="function_call_output", call_id=call_id, output=output)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ResponseItem:
        """Build an item from provider JSON; unknown keys go to ``extra``."""
        known = {k: raw.get(k) for k in _ITEM_FIELDS}
        extra = {
            k: v for k, v in raw.items()
            if k != "type" and k not in _ITEM_FIELDS
        }
        return cls(type=str(raw.get("type", "message")), extra=extra, **known)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        for name in _ITEM_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        data.update(self.extra)
        return data

    @property
    def text(self) -> str:
        """Concatenated text of the item's content blocks."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            block.get("text", "") for block in self.content
            if isinstance(block, dict)
        )


# ---------------------------------------------------------------------------
# Tool declarations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass(frozen=True)
class ToolSpec:
    """A tool the model may call.

    Either declared through ``parameters`` or wrapping a ready-made JSON
    schema in ``raw`` (passed to the provider untouched).
    """

    name: str
    description: str = ""
    parameters: tuple[ToolParameter, ...] = ()
    raw: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ToolSpec:
        func = raw.get("function", raw)
        return cls(
            name=func.get("name", ""),
            description=func.get("description", ""),
            raw=raw,
        )

    def json_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {
                "type": p.type,
                "description": p.description,
            }
            if p.enum:
                prop["enum"] = p.enum
            if p.default is not None:
                prop["default"] = p.default
            properties[p.name] = prop
            if p.required:
                required.append(p.name)
        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_chat_schema(self) -> dict[str, Any]:
        """Nested Chat Completions function format."""
        if self.raw is not None:
            if "function" in self.raw:
                return self.raw
            return {
                "type": "function",
                "function": {
                    "name": self.name,
                    "description": self.description,
                    "parameters": self.raw.get("parameters", {"type": "object", "properties": {}}),
                },
            }
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.json_schema(),
            },
        }

    def to_responses_schema(self) -> dict[str, Any]:
        """Flat Responses API function format."""
        if self.raw is not None:
            if "function" not in self.raw:
                return self.raw
            func = self.raw["function"]
            return {
                "type": "function",
                "name": func.get("name", self.name),
                "description": func.get("description", self.description),
                "strict": False,
                "parameters": func.get("parameters", {"type": "object", "properties": {}}),
            }
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "strict": False,
            "parameters": self.json_schema(),
        }


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Prompt:
    """Everything the model sees for one turn."""

    input: tuple[ResponseItem, ...]
    tools: tuple[ToolSpec, ...] = ()
    base_instructions_override: str | None = None
    output_schema: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        # Accept lists from callers but keep the prompt immutable.
        object.__setattr__(self, "input", tuple(self.input))
        object.__setattr__(self, "tools", tuple(self.tools))


# ---------------------------------------------------------------------------
# Usage and rate limits
# ---------------------------------------------------------------------------

def _non_negative_int(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    return max(number, 0)


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the provider for one response."""

    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_responses_usage(cls, usage: dict[str, Any]) -> TokenUsage:
        input_details = usage.get("input_tokens_details") or {}
        output_details = usage.get("output_tokens_details") or {}
        return cls(
            input_tokens=_non_negative_int(usage.get("input_tokens")),
            cached_input_tokens=_non_negative_int(input_details.get("cached_tokens")),
            output_tokens=_non_negative_int(usage.get("output_tokens")),
            reasoning_output_tokens=_non_negative_int(
                output_details.get("reasoning_tokens"),
            ),
            total_tokens=_non_negative_int(usage.get("total_tokens")),
        )

    @classmethod
    def from_chat_usage(cls, usage: dict[str, Any]) -> TokenUsage:
        prompt_details = usage.get("prompt_tokens_details") or {}
        completion_details = usage.get("completion_tokens_details") or {}
        return cls(
            input_tokens=_non_negative_int(usage.get("prompt_tokens")),
            cached_input_tokens=_non_negative_int(prompt_details.get("cached_tokens")),
            output_tokens=_non_negative_int(usage.get("completion_tokens")),
            reasoning_output_tokens=_non_negative_int(
                completion_details.get("reasoning_tokens"),
            ),
            total_tokens=_non_negative_int(usage.get("total_tokens")),
        )

    def __add__(self, other: TokenUsage) -> TokenUsage:
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            cached_input_tokens=self.cached_input_tokens + other.cached_input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            reasoning_output_tokens=(
                self.reasoning_output_tokens + other.reasoning_output_tokens
            ),
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class RateLimitWindow:
    """Usage of one provider quota window."""

    used_percent: float
    window_minutes: int | None = None
    resets_in_seconds: int | None = None


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Primary and/or secondary quota windows; never empty."""

    primary: RateLimitWindow | None = None
    secondary: RateLimitWindow | None = None

    def __post_init__(self) -> None:
        if self.primary is None and self.secondary is None:
            raise ValueError("RateLimitSnapshot needs at least one window")

    def most_restrictive(self) -> RateLimitWindow:
        """The window with the highest usage (primary wins ties)."""
        if self.primary is None:
            return self.secondary  # type: ignore[return-value]
        if self.secondary is None:
            return self.primary
        if self.primary.used_percent >= self.secondary.used_percent:
            return self.primary
        return self.secondary

    def is_approaching(self, threshold: float = 80.0) -> bool:
        return self.most_restrictive().used_percent >= threshold


# ---------------------------------------------------------------------------
# Response events
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Discriminator for ``ResponseEvent`` variants."""

    CREATED = "created"
    OUTPUT_ITEM_DONE = "output_item_done"
    OUTPUT_TEXT_DELTA = "output_text_delta"
    REASONING_CONTENT_DELTA = "reasoning_content_delta"
    REASONING_SUMMARY_DELTA = "reasoning_summary_delta"
    REASONING_SUMMARY_PART_ADDED = "reasoning_summary_part_added"
    WEB_SEARCH_CALL_BEGIN = "web_search_call_begin"
    RATE_LIMITS = "rate_limits"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Created:
    type: EventType = field(default=EventType.CREATED, init=False)


@dataclass(frozen=True)
class OutputItemDone:
    item: ResponseItem
    type: EventType = field(default=EventType.OUTPUT_ITEM_DONE, init=False)


@dataclass(frozen=True)
class OutputTextDelta:
    delta: str
    type: EventType = field(default=EventType.OUTPUT_TEXT_DELTA, init=False)


@dataclass(frozen=True)
class ReasoningContentDelta:
    delta: str
    type: EventType = field(default=EventType.REASONING_CONTENT_DELTA, init=False)


@dataclass(frozen=True)
class ReasoningSummaryDelta:
    delta: str
    type: EventType = field(default=EventType.REASONING_SUMMARY_DELTA, init=False)


@dataclass(frozen=True)
class ReasoningSummaryPartAdded:
    type: EventType = field(default=EventType.REASONING_SUMMARY_PART_ADDED, init=False)


@dataclass(frozen=True)
class WebSearchCallBegin:
    call_id: str
    type: EventType = field(default=EventType.WEB_SEARCH_CALL_BEGIN, init=False)


@dataclass(frozen=True)
class RateLimits:
    snapshot: RateLimitSnapshot
    type: EventType = field(default=EventType.RATE_LIMITS, init=False)


@dataclass(frozen=True)
class Completed:
    response_id: str
    token_usage: TokenUsage | None = None
    type: EventType = field(default=EventType.COMPLETED, init=False)


ResponseEvent = Union[
    Created,
    OutputItemDone,
    OutputTextDelta,
    ReasoningContentDelta,
    ReasoningSummaryDelta,
    ReasoningSummaryPartAdded,
    WebSearchCallBegin,
    RateLimits,
    Completed,
]
