"""Streaming model client for OpenAI-compatible Responses and Chat endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx

from llm_stream.config import ClientConfig, ProviderSpec, WireApi
from llm_stream.errors import (
    ConfigurationError,
    StreamInterruptedError,
    StreamProtocolError,
)
from llm_stream.types import Prompt, RateLimits, ResponseEvent

from .cancel import CancelToken, guarded
from .models import ModelFamily, auto_compact_token_limit, context_window, model_family
from .rate_limits import parse_rate_limit_snapshot
from .request_builder import BuiltRequest, RequestBuilder, RequestSettings
from .retry import RetryOrchestrator, StreamAttemptError, classify_exception
from .sse import SSEFrameReader, StreamIdleTimeout
from .translator import translate, translator_for

_logger = logging.getLogger(__name__)

# The provider's idle timeout bounds the wait for headers and for each body
# read; connecting still has its own deadline.
_HTTP_TIMEOUT = httpx.Timeout(60.0, connect=30.0, read=None)

_ERROR_BODY_LIMIT = 500


def _error_message(status: int, body: bytes) -> str:
    """Best-effort message from an error response body."""
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"HTTP {status}: {error['message']}"
        if isinstance(error, str) and error:
            return f"HTTP {status}: {error}"
    if text:
        return f"HTTP {status}: {text[:_ERROR_BODY_LIMIT]}"
    return f"HTTP {status}"


@dataclass
class _Connection:
    """A committed attempt: open response plus the events already pulled."""

    response: httpx.Response
    events: AsyncIterator[ResponseEvent]
    pending: list[ResponseEvent] = field(default_factory=list)

    async def close(self) -> None:
        try:
            await self.events.aclose()  # type: ignore[attr-defined]
        finally:
            await self.response.aclose()


class ResponseStream:
    """Events of one model turn.

    Iterate with ``async for`` (or use ``collect()``).  Nothing is sent
    until iteration starts.  ``state`` moves through ``idle``,
    ``requesting``, ``streaming`` and ends at ``completed`` or ``failed``.

    Failures are retried only until the first event arrives.  After that a
    dropped connection or an idle timeout raises ``StreamInterruptedError``
    (with ``events_delivered``) and nothing is re-sent, since the caller
    has already consumed part of the turn.  Callers that want a fresh
    attempt start a new ``stream()``.
    """

    def __init__(
        self,
        client: ModelClient,
        request: BuiltRequest,
        cancel: CancelToken | None = None,
    ) -> None:
        self._client = client
        self.request = request
        self._cancel = cancel
        self._iter: AsyncIterator[ResponseEvent] | None = None
        self.state = "idle"
        self.attempts = 0
        self.events_delivered = 0

    def __aiter__(self) -> ResponseStream:
        return self

    async def __anext__(self) -> ResponseEvent:
        if self._iter is None:
            self._iter = self._events()
        return await self._iter.__anext__()

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the stream and release its connection."""
        if self._iter is not None:
            await self._iter.aclose()  # type: ignore[attr-defined]
        if self.state in ("idle", "requesting", "streaming"):
            self.state = "failed"

    async def collect(self) -> list[ResponseEvent]:
        return [event async for event in self]

    async def _attempt(self, attempt: int) -> _Connection:
        """Send the request and read up to the first event.

        Everything that fails here is classified for retry; once this
        returns the stream is committed.
        """
        self.attempts = attempt + 1
        client = self._client
        _logger.debug("POST %s (attempt %d)", self.request.url, self.attempts)
        request = client.http.build_request(
            "POST", self.request.url,
            headers=self.request.headers, json=self.request.json,
        )
        idle_timeout = client.provider.stream_idle_timeout
        send = asyncio.wait_for(client.http.send(request, stream=True), timeout=idle_timeout)
        try:
            try:
                response = await guarded(send, self._cancel)
            except asyncio.TimeoutError:
                raise StreamIdleTimeout(idle_timeout) from None
        except (httpx.HTTPError, StreamIdleTimeout) as e:
            err = classify_exception(e)
            if err is None:
                raise
            raise err from e

        try:
            if not response.is_success:
                try:
                    body = await guarded(response.aread(), self._cancel)
                except httpx.HTTPError:
                    body = b""
                raise StreamAttemptError.from_response(
                    response.status_code, response.headers,
                    _error_message(response.status_code, body),
                )

            snapshot = parse_rate_limit_snapshot(response.headers)
            reader = SSEFrameReader(
                response.aiter_bytes(),
                idle_timeout=client.provider.stream_idle_timeout,
                cancel=self._cancel,
            )
            events = translate(reader, translator_for(client.wire_api))
            try:
                first = await events.__anext__()
            except StopAsyncIteration:
                first = None
            except (httpx.HTTPError, StreamIdleTimeout) as e:
                await events.aclose()
                err = classify_exception(e)
                if err is None:
                    raise
                raise err from e
        except BaseException:
            await response.aclose()
            raise

        pending: list[ResponseEvent] = []
        if snapshot is not None:
            pending.append(RateLimits(snapshot=snapshot))
        if first is not None:
            pending.append(first)
        return _Connection(response=response, events=events, pending=pending)

    async def _events(self) -> AsyncIterator[ResponseEvent]:
        client = self._client
        self.state = "requesting"
        start = time.monotonic()
        conn: _Connection | None = None
        try:
            conn = await client.retry.run(self._attempt, self._cancel)
            self.state = "streaming"
            for event in conn.pending:
                self.events_delivered += 1
                yield event
            while True:
                try:
                    event = await conn.events.__anext__()
                except StopAsyncIteration:
                    break
                except (httpx.HTTPError, StreamIdleTimeout) as e:
                    if classify_exception(e) is None:
                        raise
                    raise StreamInterruptedError(
                        f"stream interrupted after {self.events_delivered} event(s): {e}",
                        attempts=self.attempts,
                        events_delivered=self.events_delivered,
                    ) from e
                self.events_delivered += 1
                yield event
            self.state = "completed"
            _logger.info(
                "Stream completed: %d event(s), %d attempt(s), %.0fms",
                self.events_delivered, self.attempts, (time.monotonic() - start) * 1000,
            )
        except StreamProtocolError as e:
            self.state = "failed"
            if not e.attempts:
                e.attempts = self.attempts
            raise
        except BaseException:
            self.state = "failed"
            raise
        finally:
            if conn is not None:
                await conn.close()


class ModelClient:
    """Streaming client bound to one provider and model.

    Parameters
    ----------
    provider:
        Endpoint, credentials, wire shape and retry policy.
    model:
        Model slug sent with every request.
    http_client:
        Optional ``httpx.AsyncClient``; the client only closes clients it
        created itself.
    rng, sleep:
        Randomness and sleep used for retry backoff.
    """

    def __init__(
        self,
        provider: ProviderSpec,
        model: str,
        *,
        reasoning_effort: str | None = None,
        reasoning_summary: str | None = None,
        verbosity: str | None = None,
        conversation_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if provider.requires_api_key and not provider.resolve_api_key():
            raise ConfigurationError(
                f"No API key for provider {provider.name!r}",
                hint=f"set {provider.env_key}" if provider.env_key else "set api_key in the config",
            )
        self._provider = provider
        self._model = model
        self._reasoning_effort = reasoning_effort
        self._reasoning_summary = reasoning_summary
        self.verbosity = verbosity
        self.conversation_id = conversation_id
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=_HTTP_TIMEOUT)
        self._builder = RequestBuilder(provider)
        self.retry = RetryOrchestrator(provider.retry, provider=provider.name, rng=rng, sleep=sleep)

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> ModelClient:
        return cls(
            config.active_provider,
            config.model,
            reasoning_effort=config.reasoning_effort,
            reasoning_summary=config.reasoning_summary,
            verbosity=config.verbosity,
            conversation_id=config.conversation_id,
            **kwargs,
        )

    @property
    def provider(self) -> ProviderSpec:
        return self._provider

    @property
    def wire_api(self) -> WireApi:
        return self._provider.wire_api

    @property
    def model(self) -> str:
        return self._model

    @model.setter
    def model(self, value: str) -> None:
        self._model = value

    @property
    def model_family(self) -> ModelFamily:
        return model_family(self._model)

    @property
    def context_window(self) -> int | None:
        return context_window(self._model)

    @property
    def auto_compact_token_limit(self) -> int | None:
        return auto_compact_token_limit(self._model)

    @property
    def reasoning_effort(self) -> str | None:
        return self._reasoning_effort

    @property
    def reasoning_summary(self) -> str | None:
        return self._reasoning_summary

    def settings(self) -> RequestSettings:
        return RequestSettings(
            model=self._model,
            family=self.model_family,
            reasoning_effort=self._reasoning_effort,
            reasoning_summary=self._reasoning_summary,
            verbosity=self.verbosity,
            conversation_id=self.conversation_id,
        )

    def stream(self, prompt: Prompt, cancel: CancelToken | None = None) -> ResponseStream:
        """Start one turn.  Request errors (e.g. empty input) raise here."""
        request = self._builder.build(prompt, self.settings())
        return ResponseStream(self, request, cancel)

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> ModelClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
