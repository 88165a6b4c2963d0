"""Test helpers shared across modules: fake SSE bodies and byte sources."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

BASE_URL = "https://api.test/v1"


def sse_bytes(*payloads: dict[str, Any], done: bool = False) -> bytes:
    """Encode payloads as an SSE body."""
    body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


class ByteSource:
    """Async byte iterator over fixed chunks that records whether it was closed."""

    def __init__(self, chunks: list[bytes], *, hang: bool = False, error: Exception | None = None):
        self.chunks = chunks
        self.hang = hang
        self.error = error
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            for chunk in self.chunks:
                yield chunk
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.sleep(3600)
        finally:
            self.closed = True


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def responses_turn(text: str = "Hello", response_id: str = "resp_1") -> list[dict[str, Any]]:
    """Payloads of a minimal successful Responses turn."""
    return [
        {"type": "response.created", "response": {"id": response_id}},
        {"type": "response.output_text.delta", "delta": text},
        {
            "type": "response.output_item.done",
            "item": {
                "type": "message", "role": "assistant", "id": "msg_1",
                "content": [{"type": "output_text", "text": text}],
            },
        },
        {
            "type": "response.completed",
            "response": {
                "id": response_id,
                "usage": {
                    "input_tokens": 10,
                    "input_tokens_details": {"cached_tokens": 2},
                    "output_tokens": 5,
                    "output_tokens_details": {"reasoning_tokens": 1},
                    "total_tokens": 15,
                },
            },
        },
    ]
