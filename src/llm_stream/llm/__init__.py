"""Streaming model client and its building blocks."""

from llm_stream.llm.cancel import CancelToken
from llm_stream.llm.client import ModelClient, ResponseStream
from llm_stream.llm.models import ModelFamily, auto_compact_token_limit, context_window, find_family
from llm_stream.llm.rate_limits import RateLimitTracker, parse_rate_limit_snapshot
from llm_stream.llm.request_builder import BuiltRequest, RequestBuilder, RequestSettings
from llm_stream.llm.retry import RetryOrchestrator, RetryState, StreamAttemptError
from llm_stream.llm.sse import SSEFrame, SSEFrameReader, StreamIdleTimeout
from llm_stream.llm.translator import ChatTranslator, ResponsesTranslator, translator_for

__all__ = [
    "BuiltRequest",
    "CancelToken",
    "ChatTranslator",
    "ModelClient",
    "ModelFamily",
    "RateLimitTracker",
    "RequestBuilder",
    "RequestSettings",
    "ResponseStream",
    "ResponsesTranslator",
    "RetryOrchestrator",
    "RetryState",
    "SSEFrame",
    "SSEFrameReader",
    "StreamAttemptError",
    "StreamIdleTimeout",
    "auto_compact_token_limit",
    "context_window",
    "find_family",
    "parse_rate_limit_snapshot",
    "translator_for",
]
