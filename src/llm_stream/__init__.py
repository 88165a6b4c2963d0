"""llm-stream: streaming client for OpenAI-compatible model endpoints."""

from llm_stream.config import ClientConfig, ProviderSpec, RetrySpec, WireApi, load_config
from llm_stream.errors import (
    ConfigurationError,
    EmptyInputError,
    LLMStreamError,
    RequestFailedError,
    ResponseFailedError,
    StreamCancelledError,
    StreamClosedError,
    StreamInterruptedError,
    StreamProtocolError,
)
from llm_stream.llm import CancelToken, ModelClient, ResponseStream
from llm_stream.types import (
    Completed,
    EventType,
    Prompt,
    ResponseEvent,
    ResponseItem,
    TokenUsage,
    ToolSpec,
)
from llm_stream.usage import TokenUsageTracker

__version__ = "0.1.0"

__all__ = [
    "CancelToken",
    "ClientConfig",
    "Completed",
    "ConfigurationError",
    "EmptyInputError",
    "EventType",
    "LLMStreamError",
    "ModelClient",
    "Prompt",
    "ProviderSpec",
    "RequestFailedError",
    "ResponseEvent",
    "ResponseFailedError",
    "ResponseItem",
    "ResponseStream",
    "RetrySpec",
    "StreamCancelledError",
    "StreamClosedError",
    "StreamInterruptedError",
    "StreamProtocolError",
    "TokenUsage",
    "TokenUsageTracker",
    "ToolSpec",
    "WireApi",
    "load_config",
]
