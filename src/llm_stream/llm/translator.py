"""Translate decoded SSE payloads into ``ResponseEvent`` objects.

One translator class per wire shape.  A translator instance holds the
state of a single stream and must not be reused across streams.

The terminal completion is never yielded when its payload arrives: it is
kept until the byte stream ends so that ``Completed`` is always the last
event of a successful stream.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Callable, Protocol

from llm_stream.config import WireApi
from llm_stream.errors import ResponseFailedError, StreamClosedError
from llm_stream.types import (
    Completed,
    Created,
    OutputItemDone,
    OutputTextDelta,
    ReasoningContentDelta,
    ReasoningSummaryDelta,
    ReasoningSummaryPartAdded,
    ResponseEvent,
    ResponseItem,
    TokenUsage,
    WebSearchCallBegin,
)

from .sse import SSEFrame

_logger = logging.getLogger(__name__)


class EventTranslator(Protocol):
    """Per-stream payload translator."""

    def handle(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        """Events for one payload, in wire order.  May raise ``ResponseFailedError``."""
        ...

    def finish(self, done_seen: bool) -> list[ResponseEvent]:
        """Events at natural stream end; the last one is ``Completed``.

        Raises ``StreamClosedError`` when no completion was received.
        """
        ...


def decode_payload(frame: SSEFrame) -> dict[str, Any] | None:
    """Parse a frame's JSON; malformed or non-object payloads are skipped."""
    try:
        payload = json.loads(frame.data)
    except json.JSONDecodeError as e:
        _logger.warning("Skipping malformed SSE payload (%s): %.200s", e, frame.data)
        return None
    if not isinstance(payload, dict):
        _logger.warning("Skipping non-object SSE payload: %.200s", frame.data)
        return None
    return payload


async def translate(
    frames: AsyncIterable[SSEFrame],
    translator: EventTranslator,
) -> AsyncIterator[ResponseEvent]:
    """Drive *translator* over *frames* and yield events in order.

    *frames* may expose a ``done`` attribute (``SSEFrameReader`` does)
    telling whether the stream ended with the ``[DONE]`` sentinel.
    """
    async for frame in frames:
        payload = decode_payload(frame)
        if payload is None:
            continue
        for event in translator.handle(payload):
            yield event
    for event in translator.finish(bool(getattr(frames, "done", False))):
        yield event


# ---------------------------------------------------------------------------
# Responses wire
# ---------------------------------------------------------------------------

# Payload types that carry nothing the event stream exposes.
_RESPONSES_IGNORED = frozenset({
    "response.in_progress",
    "response.queued",
    "response.output_text.done",
    "response.content_part.added",
    "response.content_part.done",
    "response.function_call_arguments.delta",
    "response.function_call_arguments.done",
    "response.custom_tool_call_input.delta",
    "response.custom_tool_call_input.done",
    "response.reasoning_summary_text.done",
    "response.reasoning_summary_part.done",
    "response.reasoning_text.done",
    "response.web_search_call.in_progress",
    "response.web_search_call.searching",
    "response.web_search_call.completed",
})


def _mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _error_fields(error: Any) -> tuple[str | None, str | None]:
    """``(message, code)`` from an error that may be an object or a bare string."""
    if isinstance(error, dict):
        return error.get("message"), error.get("code")
    if isinstance(error, str) and error:
        return error, None
    return None, None


class ResponsesTranslator:
    """Translator for the Responses streaming endpoint."""

    def __init__(self) -> None:
        self._completed: dict[str, Any] | None = None
        self._handlers: dict[str, Callable[[dict[str, Any]], list[ResponseEvent]]] = {
            "response.created": self._on_created,
            "response.output_item.done": self._on_output_item_done,
            "response.output_item.added": self._on_output_item_added,
            "response.output_text.delta": self._on_output_text_delta,
            "response.reasoning_text.delta": self._on_reasoning_text_delta,
            "response.reasoning_summary_text.delta": self._on_reasoning_summary_delta,
            "response.reasoning_summary_part.added": self._on_summary_part_added,
            "response.completed": self._on_completed,
            "response.failed": self._on_failed,
            "response.incomplete": self._on_incomplete,
            "error": self._on_error,
        }

    def handle(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        kind = payload.get("type")
        handler = self._handlers.get(kind)  # type: ignore[arg-type]
        if handler is not None:
            return handler(payload)
        if kind not in _RESPONSES_IGNORED:
            _logger.debug("Unhandled SSE payload type: %s", kind)
        return []

    def finish(self, done_seen: bool) -> list[ResponseEvent]:
        if self._completed is None:
            raise StreamClosedError()
        usage = self._completed.get("usage")
        return [
            Completed(
                response_id=str(self._completed.get("id", "")),
                token_usage=TokenUsage.from_responses_usage(usage) if usage else None,
            ),
        ]

    # -- handlers ---------------------------------------------------------

    def _on_created(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        return [Created()]

    def _on_output_item_done(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        item = payload.get("item")
        if not isinstance(item, dict):
            return []
        return [OutputItemDone(item=ResponseItem.from_dict(item))]

    def _on_output_item_added(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        item = payload.get("item")
        if isinstance(item, dict) and item.get("type") == "web_search_call":
            return [WebSearchCallBegin(call_id=str(item.get("id") or ""))]
        return []

    def _on_output_text_delta(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        delta = payload.get("delta")
        return [OutputTextDelta(delta=delta)] if delta else []

    def _on_reasoning_text_delta(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        delta = payload.get("delta")
        return [ReasoningContentDelta(delta=delta)] if delta else []

    def _on_reasoning_summary_delta(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        delta = payload.get("delta")
        return [ReasoningSummaryDelta(delta=delta)] if delta else []

    def _on_summary_part_added(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        return [ReasoningSummaryPartAdded()]

    def _on_completed(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        response = payload.get("response")
        if isinstance(response, dict):
            self._completed = response
        else:
            _logger.warning("response.completed without a response object")
        return []

    def _on_failed(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        response = _mapping(payload.get("response"))
        message, code = _error_fields(response.get("error"))
        raise ResponseFailedError(
            message or "Response failed",
            code=code,
            response_id=response.get("id"),
        )

    def _on_incomplete(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        response = _mapping(payload.get("response"))
        reason = _mapping(response.get("incomplete_details")).get("reason") or "unknown"
        raise ResponseFailedError(
            f"Incomplete response returned, reason: {reason}",
            code="incomplete",
            response_id=response.get("id"),
        )

    def _on_error(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        error = payload.get("error") if payload.get("error") else payload
        message, code = _error_fields(error)
        raise ResponseFailedError(message or "Response failed", code=code)


# ---------------------------------------------------------------------------
# Chat Completions wire
# ---------------------------------------------------------------------------

class ToolCallAccumulator:
    """Accumulate streamed ``tool_calls`` fragments by index.

    Chat providers send the call id and function name on the first
    fragment of each call and split ``function.arguments`` across chunks.
    """

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, str]] = {}

    def feed(self, delta: dict[str, Any]) -> None:
        """Process ``delta.tool_calls`` from a single chunk."""
        tc_list = delta.get("tool_calls")
        if not tc_list:
            return
        for tc in tc_list:
            idx = tc.get("index", 0)
            func = tc.get("function") or {}
            entry = self._calls.setdefault(idx, {"id": "", "name": "", "arguments": ""})
            if tc.get("id"):
                entry["id"] = tc["id"]
            if func.get("name"):
                entry["name"] = func["name"]
            if func.get("arguments"):
                entry["arguments"] += func["arguments"]

    def has_calls(self) -> bool:
        return bool(self._calls)

    def finalize(self) -> list[ResponseItem]:
        """Accumulated calls as ``function_call`` items, in index order."""
        items: list[ResponseItem] = []
        for idx in sorted(self._calls):
            entry = self._calls[idx]
            if not entry["name"]:
                _logger.warning("Dropping streamed tool call %d without a name", idx)
                continue
            items.append(
                ResponseItem(
                    type="function_call",
                    call_id=entry["id"],
                    name=entry["name"],
                    arguments=entry["arguments"],
                )
            )
        self._calls.clear()
        return items


def _reasoning_text(value: Any) -> str:
    # Some providers stream reasoning as a plain string, others nest it.
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        text = value.get("text") or value.get("content")
        if isinstance(text, str):
            return text
    return ""


class ChatTranslator:
    """Translator for the Chat Completions streaming endpoint."""

    def __init__(self) -> None:
        self._text = ""
        self._reasoning = ""
        self._tool_calls = ToolCallAccumulator()
        self._response_id = ""
        self._finished = False
        self._usage: TokenUsage | None = None

    def handle(self, payload: dict[str, Any]) -> list[ResponseEvent]:
        error = payload.get("error")
        if error:
            message, code = _error_fields(error)
            raise ResponseFailedError(message or str(error), code=code)

        if payload.get("id"):
            self._response_id = str(payload["id"])
        if isinstance(payload.get("usage"), dict):
            self._usage = TokenUsage.from_chat_usage(payload["usage"])

        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return []
        choice = choices[0]
        delta = choice.get("delta") or {}
        events: list[ResponseEvent] = []

        content = delta.get("content")
        if isinstance(content, str) and content:
            self._text += content
            events.append(OutputTextDelta(delta=content))

        # Servers may mirror the same text into several fields; use the first.
        for value in (
            delta.get("reasoning"),
            delta.get("reasoning_content"),
            _mapping(choice.get("message")).get("reasoning"),
        ):
            text = _reasoning_text(value)
            if text:
                self._reasoning += text
                events.append(ReasoningContentDelta(delta=text))
                break

        self._tool_calls.feed(delta)

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            events.extend(self._flush_items())
            self._finished = True
        return events

    def finish(self, done_seen: bool) -> list[ResponseEvent]:
        events: list[ResponseEvent] = []
        if not self._finished:
            if not done_seen:
                raise StreamClosedError()
            # [DONE] without finish_reason: the server still ended the turn.
            events.extend(self._flush_items())
        events.append(Completed(response_id=self._response_id, token_usage=self._usage))
        return events

    def _flush_items(self) -> list[ResponseEvent]:
        events: list[ResponseEvent] = []
        if self._reasoning:
            events.append(OutputItemDone(item=ResponseItem(
                type="reasoning",
                content=[{"type": "reasoning_text", "text": self._reasoning}],
            )))
            self._reasoning = ""
        if self._tool_calls.has_calls():
            events.extend(OutputItemDone(item=item) for item in self._tool_calls.finalize())
        if self._text:
            events.append(OutputItemDone(item=ResponseItem.assistant(self._text)))
            self._text = ""
        return events


TRANSLATORS: dict[WireApi, Callable[[], EventTranslator]] = {
    WireApi.RESPONSES: ResponsesTranslator,
    WireApi.CHAT: ChatTranslator,
}


def translator_for(wire_api: WireApi) -> EventTranslator:
    """Fresh translator for one stream on *wire_api*."""
    return TRANSLATORS[wire_api]()
