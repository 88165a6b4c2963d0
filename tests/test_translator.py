"""Tests for SSE payload to ResponseEvent translation."""

import logging

import pytest

from helpers import ByteSource, sse_bytes
from llm_stream.config import WireApi
from llm_stream.errors import ResponseFailedError, StreamClosedError
from llm_stream.llm.sse import SSEFrameReader
from llm_stream.llm.translator import (
    ChatTranslator,
    ResponsesTranslator,
    ToolCallAccumulator,
    translate,
    translator_for,
)
from llm_stream.types import (
    Completed,
    Created,
    EventType,
    OutputItemDone,
    OutputTextDelta,
    ReasoningContentDelta,
    ReasoningSummaryDelta,
    ReasoningSummaryPartAdded,
    TokenUsage,
    WebSearchCallBegin,
)

async def _events(body: bytes, translator) -> list:
    reader = SSEFrameReader(ByteSource([body]))
    return [event async for event in translate(reader, translator)]

COMPLETED = {"type": "response.completed", "response": {"id": "resp_1"}}

class TestResponsesTranslator:
    async def test_created_delta_completed(self):
        body = sse_bytes(
            {"type": "response.created", "response": {}},
            {"type": "response.output_text.delta", "delta": "Hi"},
            {"type": "response.completed", "response": {
                "id": "resp_1",
                "usage": {"input_tokens": 3, "output_tokens": 1, "total_tokens": 4},
            }},
        )
        events = await _events(body, ResponsesTranslator())
        assert events == [
            Created(),
            OutputTextDelta("Hi"),
            Completed("resp_1", TokenUsage(input_tokens=3, output_tokens=1, total_tokens=4)),
        ]

    @pytest.mark.parametrize("payload, expected", [
        ({"type": "response.reasoning_summary_text.delta", "delta": "s"}, ReasoningSummaryDelta("s")),
        ({"type": "response.reasoning_text.delta", "delta": "r"}, ReasoningContentDelta("r")),
        ({"type": "response.reasoning_summary_part.added"}, ReasoningSummaryPartAdded()),
        (
            {"type": "response.output_item.added", "item": {"type": "web_search_call", "id": "ws_1"}},
            WebSearchCallBegin("ws_1"),
        ),
    ])
    async def test_single_payload_types(self, payload, expected):
        events = await _events(sse_bytes(payload, COMPLETED), ResponsesTranslator())
        assert events == [expected, Completed("resp_1")]

    async def test_output_item_done(self):
        item = {"type": "function_call", "call_id": "c1", "name": "shell", "arguments": "{}"}
        events = await _events(
            sse_bytes({"type": "response.output_item.done", "item": item}, COMPLETED),
            ResponsesTranslator(),
        )
        assert isinstance(events[0], OutputItemDone)
        assert events[0].item.name == "shell"
        assert events[0].item.call_id == "c1"

    async def test_noop_and_unknown_types_dropped(self, caplog):
        body = sse_bytes(
            {"type": "response.in_progress"},
            {"type": "response.output_text.done", "text": "x"},
            {"type": "response.output_item.added", "item": {"type": "message"}},
            {"type": "response.brand_new_thing"},
            COMPLETED,
        )
        with caplog.at_level(logging.DEBUG, logger="llm_stream.llm.translator"):
            events = await _events(body, ResponsesTranslator())
        assert events == [Completed("resp_1")]
        assert "response.brand_new_thing" in caplog.text
        assert "response.in_progress" not in caplog.text

    async def test_completed_held_until_stream_end(self):
        body = sse_bytes(COMPLETED, {"type": "response.output_text.delta", "delta": "late"})
        events = await _events(body, ResponsesTranslator())
        assert events == [OutputTextDelta("late"), Completed("resp_1")]

    async def test_failed(self):
        body = sse_bytes(
            {"type": "response.output_text.delta", "delta": "partial"},
            {"type": "response.failed", "response": {
                "id": "resp_9",
                "error": {"code": "server_error", "message": "model crashed"},
            }},
        )
        seen = []
        with pytest.raises(ResponseFailedError) as exc:
            async for event in translate(SSEFrameReader(ByteSource([body])), ResponsesTranslator()):
                seen.append(event)
        assert seen == [OutputTextDelta("partial")]
        assert str(exc.value) == "model crashed"
        assert exc.value.code == "server_error"
        assert exc.value.response_id == "resp_9"

    async def test_failed_without_details(self):
        with pytest.raises(ResponseFailedError, match="Response failed"):
            await _events(sse_bytes({"type": "response.failed"}), ResponsesTranslator())

    async def test_incomplete(self):
        body = sse_bytes({"type": "response.incomplete", "response": {
            "incomplete_details": {"reason": "max_output_tokens"},
        }})
        with pytest.raises(ResponseFailedError, match="max_output_tokens"):
            await _events(body, ResponsesTranslator())

    @pytest.mark.parametrize("payload, message", [
        ({"type": "response.failed", "response": {"id": "resp_3", "error": "quota exceeded"}},
         "quota exceeded"),
        ({"type": "response.failed", "response": "quota exceeded"}, "Response failed"),
        ({"type": "error", "error": "quota exceeded"}, "quota exceeded"),
    ])
    def test_string_errors_still_fail_the_response(self, payload, message):
        with pytest.raises(ResponseFailedError) as exc:
            ResponsesTranslator().handle(payload)
        assert str(exc.value) == message

    def test_incomplete_with_non_object_details(self):
        with pytest.raises(ResponseFailedError, match="reason: unknown"):
            ResponsesTranslator().handle(
                {"type": "response.incomplete", "response": {"incomplete_details": "cut"}},
            )

    async def test_missing_completion(self):
        body = sse_bytes({"type": "response.output_text.delta", "delta": "x"})
        with pytest.raises(StreamClosedError):
            await _events(body, ResponsesTranslator())

    async def test_malformed_json_skipped(self, caplog):
        body = b"data: {not json\n\n" + b"data: [1, 2]\n\n" + sse_bytes(
            {"type": "response.output_text.delta", "delta": "ok"}, COMPLETED,
        )
        with caplog.at_level(logging.WARNING, logger="llm_stream.llm.translator"):
            events = await _events(body, ResponsesTranslator())
        assert events == [OutputTextDelta("ok"), Completed("resp_1")]
        assert "malformed" in caplog.text

    async def test_empty_deltas_dropped(self):
        body = sse_bytes({"type": "response.output_text.delta", "delta": ""}, COMPLETED)
        assert await _events(body, ResponsesTranslator()) == [Completed("resp_1")]

def _chunk(delta: dict | None = None, finish_reason: str | None = None, **extra) -> dict:
    choice = {"index": 0, "delta": delta or {}, "finish_reason": finish_reason}
    return {"id": "chatcmpl-1", "choices": [choice], **extra}

class TestChatTranslator:
    async def test_text_turn(self):
        body = sse_bytes(
            _chunk({"role": "assistant", "content": "Hel"}),
            _chunk({"content": "lo"}),
            _chunk(finish_reason="stop"),
            {"id": "chatcmpl-1", "choices": [], "usage": {
                "prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7,
            }},
            done=True,
        )
        events = await _events(body, ChatTranslator())
        assert [e.type for e in events] == [
            EventType.OUTPUT_TEXT_DELTA,
            EventType.OUTPUT_TEXT_DELTA,
            EventType.OUTPUT_ITEM_DONE,
            EventType.COMPLETED,
        ]
        assert events[2].item.role == "assistant"
        assert events[2].item.text == "Hello"
        assert events[3] == Completed(
            "chatcmpl-1", TokenUsage(input_tokens=5, output_tokens=2, total_tokens=7),
        )

    async def test_tool_calls_accumulated(self):
        body = sse_bytes(
            _chunk({"tool_calls": [{"index": 0, "id": "call_a", "function": {"name": "read_file", "arguments": '{"pa'}}]}),
            _chunk({"tool_calls": [{"index": 1, "id": "call_b", "function": {"name": "shell", "arguments": ""}}]}),
            _chunk({"tool_calls": [{"index": 0, "function": {"arguments": 'th": "a"}'}}]}),
            _chunk({"tool_calls": [{"index": 1, "function": {"arguments": '{"cmd": "ls"}'}}]}),
            _chunk(finish_reason="tool_calls"),
            done=True,
        )
        events = await _events(body, ChatTranslator())
        items = [e.item for e in events if isinstance(e, OutputItemDone)]
        assert [(i.type, i.call_id, i.name, i.arguments) for i in items] == [
            ("function_call", "call_a", "read_file", '{"path": "a"}'),
            ("function_call", "call_b", "shell", '{"cmd": "ls"}'),
        ]
        assert isinstance(events[-1], Completed)

    async def test_reasoning_deltas(self):
        body = sse_bytes(
            _chunk({"reasoning": "think "}),
            _chunk({"reasoning_content": "more"}),
            _chunk({"reasoning": {"text": "!"}}),
            _chunk({"content": "answer"}, finish_reason="stop"),
        )
        events = await _events(body, ChatTranslator())
        assert [e.delta for e in events if isinstance(e, ReasoningContentDelta)] == ["think ", "more", "!"]
        items = [e.item for e in events if isinstance(e, OutputItemDone)]
        assert items[0].type == "reasoning"
        assert items[0].text == "think more!"
        assert items[1].text == "answer"

    async def test_mirrored_reasoning_fields_counted_once(self):
        body = sse_bytes(
            _chunk({"reasoning": "think", "reasoning_content": "think"}),
            _chunk({"content": "answer"}, finish_reason="stop"),
        )
        events = await _events(body, ChatTranslator())
        assert [e for e in events if isinstance(e, ReasoningContentDelta)] == [
            ReasoningContentDelta("think"),
        ]
        items = [e.item for e in events if isinstance(e, OutputItemDone)]
        assert items[0].text == "think"

    async def test_done_without_finish_reason_completes(self):
        body = sse_bytes(_chunk({"content": "x"}), done=True)
        events = await _events(body, ChatTranslator())
        assert events[0] == OutputTextDelta("x")
        assert isinstance(events[1], OutputItemDone)
        assert events[2] == Completed("chatcmpl-1")

    async def test_eof_without_finish_reason(self):
        with pytest.raises(StreamClosedError):
            await _events(sse_bytes(_chunk({"content": "x"})), ChatTranslator())

    async def test_error_chunk(self):
        body = sse_bytes({"error": {"message": "context length exceeded", "code": "context_length"}})
        with pytest.raises(ResponseFailedError) as exc:
            await _events(body, ChatTranslator())
        assert exc.value.code == "context_length"

class TestToolCallAccumulator:
    def test_nameless_call_dropped(self):
        acc = ToolCallAccumulator()
        acc.feed({"tool_calls": [{"index": 0, "function": {"arguments": "{}"}}]})
        assert acc.has_calls()
        assert acc.finalize() == []
        assert not acc.has_calls()

class TestLookup:
    def test_translator_for(self):
        assert isinstance(translator_for(WireApi.RESPONSES), ResponsesTranslator)
        assert isinstance(translator_for(WireApi.CHAT), ChatTranslator)
        assert translator_for(WireApi.CHAT) is not translator_for(WireApi.CHAT)
