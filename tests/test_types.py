"""Tests for the shared data model."""

import pytest

from llm_stream.types import (
    Completed,
    EventType,
    OutputTextDelta,
    Prompt,
    RateLimitSnapshot,
    RateLimitWindow,
    ResponseItem,
    TokenUsage,
    ToolParameter,
    ToolSpec,
)


class TestResponseItem:
    def test_user_message(self):
        item = ResponseItem.user("hi")
        assert item.to_dict() == {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": "hi"}],
        }
        assert item.text == "hi"

    def test_from_dict_keeps_unknown_keys(self):
        raw = {
            "type": "reasoning",
            "id": "rs_1",
            "summary": [{"type": "summary_text", "text": "thinking"}],
            "encrypted_content": "abc",
        }
        item = ResponseItem.from_dict(raw)
        assert item.type == "reasoning"
        assert item.id == "rs_1"
        assert item.extra == {
            "summary": [{"type": "summary_text", "text": "thinking"}],
            "encrypted_content": "abc",
        }
        assert item.to_dict() == raw

    def test_function_call_fields(self):
        item = ResponseItem.from_dict({
            "type": "function_call", "call_id": "call_1",
            "name": "shell", "arguments": '{"cmd": "ls"}',
        })
        assert item.call_id == "call_1"
        assert item.name == "shell"
        assert item.arguments == '{"cmd": "ls"}'
        assert item.extra == {}

    def test_text_of_string_content(self):
        assert ResponseItem(type="message", content="plain").text == "plain"
        assert ResponseItem(type="function_call").text == ""


class TestToolSpec:
    def _tool(self) -> ToolSpec:
        return ToolSpec(
            name="read_file",
            description="Read a file",
            parameters=(
                ToolParameter("path", "string", "File path"),
                ToolParameter("limit", "integer", "Max lines", required=False, default=100),
            ),
        )

    def test_json_schema(self):
        schema = self._tool().json_schema()
        assert schema["required"] == ["path"]
        assert schema["properties"]["limit"]["default"] == 100

    def test_chat_schema_is_nested(self):
        out = self._tool().to_chat_schema()
        assert out["type"] == "function"
        assert out["function"]["name"] == "read_file"
        assert "parameters" in out["function"]

    def test_responses_schema_is_flat(self):
        out = self._tool().to_responses_schema()
        assert out["name"] == "read_file"
        assert out["strict"] is False
        assert "function" not in out

    def test_raw_chat_tool_flattened_for_responses(self):
        raw = {
            "type": "function",
            "function": {"name": "f", "description": "d", "parameters": {"type": "object"}},
        }
        tool = ToolSpec.from_dict(raw)
        assert tool.name == "f"
        assert tool.to_chat_schema() is raw
        assert tool.to_responses_schema()["parameters"] == {"type": "object"}


class TestPrompt:
    def test_lists_become_tuples(self):
        prompt = Prompt(input=[ResponseItem.user("a")], tools=[])
        assert isinstance(prompt.input, tuple)
        assert isinstance(prompt.tools, tuple)


class TestTokenUsage:
    def test_from_responses_usage(self):
        usage = TokenUsage.from_responses_usage({
            "input_tokens": 10,
            "input_tokens_details": {"cached_tokens": 4},
            "output_tokens": 6,
            "output_tokens_details": {"reasoning_tokens": 2},
            "total_tokens": 16,
        })
        assert usage == TokenUsage(10, 4, 6, 2, 16)

    def test_from_chat_usage(self):
        usage = TokenUsage.from_chat_usage({
            "prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10,
        })
        assert usage.input_tokens == 7
        assert usage.output_tokens == 3
        assert usage.cached_input_tokens == 0

    def test_bad_values_are_zero(self):
        usage = TokenUsage.from_chat_usage({"prompt_tokens": "x", "completion_tokens": -5})
        assert usage.input_tokens == 0
        assert usage.output_tokens == 0

    def test_add(self):
        total = TokenUsage(1, 0, 2, 0, 3) + TokenUsage(4, 1, 5, 1, 9)
        assert total == TokenUsage(5, 1, 7, 1, 12)


class TestRateLimitSnapshot:
    def test_requires_a_window(self):
        with pytest.raises(ValueError):
            RateLimitSnapshot()

    def test_most_restrictive(self):
        snap = RateLimitSnapshot(
            primary=RateLimitWindow(20.0),
            secondary=RateLimitWindow(90.0),
        )
        assert snap.most_restrictive().used_percent == 90.0
        assert snap.is_approaching()
        assert not snap.is_approaching(95.0)


class TestEvents:
    def test_type_tags(self):
        assert OutputTextDelta("x").type is EventType.OUTPUT_TEXT_DELTA
        assert Completed("r").type is EventType.COMPLETED
        assert Completed("r").token_usage is None
