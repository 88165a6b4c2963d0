"""Failure classification and backoff for stream attempts.

Only failures before the first event is delivered reach this module.  Each
failed attempt is classified as a ``StreamAttemptError``; the orchestrator
decides whether to sleep and retry or to surface a ``RequestFailedError``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Mapping, TypeVar

import httpx

from llm_stream.config import RetrySpec
from llm_stream.errors import RequestFailedError

from .cancel import CancelToken, guarded
from .sse import StreamIdleTimeout

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptErrorKind(enum.Enum):
    RETRYABLE_HTTP = "http"
    RETRYABLE_TRANSPORT = "transport"
    FATAL = "fatal"


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Seconds to wait from a ``Retry-After`` value (delta seconds or HTTP-date)."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        _logger.debug("Ignoring unparseable Retry-After: %r", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((when - now).total_seconds(), 0.0)


class StreamAttemptError(Exception):
    """Why a single attempt failed, before anything reached the caller."""

    def __init__(
        self,
        message: str,
        *,
        kind: AttemptErrorKind,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return self.kind is not AttemptErrorKind.FATAL

    @classmethod
    def from_response(
        cls,
        status: int,
        headers: Mapping[str, str] | None = None,
        message: str = "",
    ) -> StreamAttemptError:
        """Classify a non-2xx status.  429 and 5xx retry, other statuses do not."""
        text = message or f"HTTP {status}"
        if status == 429 or 500 <= status <= 599:
            retry_after = parse_retry_after((headers or {}).get("retry-after"))
            return cls(
                text, kind=AttemptErrorKind.RETRYABLE_HTTP,
                status_code=status, retry_after=retry_after,
            )
        return cls(text, kind=AttemptErrorKind.FATAL, status_code=status)

    @classmethod
    def from_transport(cls, exc: BaseException) -> StreamAttemptError:
        return cls(
            f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
            kind=AttemptErrorKind.RETRYABLE_TRANSPORT,
        )

    @classmethod
    def fatal(cls, exc_or_message: BaseException | str) -> StreamAttemptError:
        return cls(str(exc_or_message), kind=AttemptErrorKind.FATAL)

    def into_error(self, attempts: int, provider: str | None = None) -> RequestFailedError:
        hint = None
        if self.status_code in (401, 403):
            hint = "check the provider API key"
        elif self.retryable:
            hint = "the provider may be overloaded; try again later"
        return RequestFailedError(
            self.message,
            kind=self.kind.value,
            attempts=attempts,
            status_code=self.status_code,
            retry_after=self.retry_after,
            retryable=self.retryable,
            provider=provider,
            hint=hint,
        )


def classify_exception(exc: BaseException) -> StreamAttemptError | None:
    """Map a transport-level exception to an attempt error, else ``None``."""
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException, StreamIdleTimeout)):
        return StreamAttemptError.from_transport(exc)
    return None


@dataclass(frozen=True)
class RetryState:
    """Progress of one ``stream()`` call through its attempt budget."""

    attempt: int = 0  # 0-based index of the next attempt
    last_error: StreamAttemptError | None = None
    delay: float = 0.0


class RetryOrchestrator:
    """Runs attempts under a ``RetrySpec`` with exponential backoff and jitter.

    ``rng`` and ``sleep`` are injectable so tests can pin the delays.
    """

    def __init__(
        self,
        spec: RetrySpec,
        *,
        provider: str | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.spec = spec
        self.provider = provider
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    def backoff(self, error: StreamAttemptError, attempt: int) -> float:
        """Delay after the failed attempt with 0-based index *attempt*."""
        jitter = self.spec.jitter_fraction
        if error.retry_after is not None:
            ra = error.retry_after
            return ra + self._rng.uniform(0, ra * jitter)
        delay = min(
            self.spec.base_delay * self.spec.multiplier ** attempt,
            self.spec.max_delay,
        )
        return delay * (1 + self._rng.uniform(0, jitter))

    def next_state(self, state: RetryState, error: StreamAttemptError) -> RetryState | None:
        """State for the next attempt, or ``None`` when no retry is allowed."""
        if not error.retryable:
            return None
        if state.attempt + 1 >= self.spec.max_attempts:
            return None
        return RetryState(
            attempt=state.attempt + 1,
            last_error=error,
            delay=self.backoff(error, state.attempt),
        )

    async def run(
        self,
        attempt_fn: Callable[[int], Awaitable[T]],
        cancel: CancelToken | None = None,
    ) -> T:
        """Call ``attempt_fn(n)`` until it succeeds or the budget is spent.

        Only ``StreamAttemptError`` is retried; any other exception
        propagates untouched.
        """
        state = RetryState()
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                return await attempt_fn(state.attempt)
            except StreamAttemptError as err:
                nxt = self.next_state(state, err)
                if nxt is None:
                    if err.retryable:
                        _logger.warning(
                            "Giving up after %d attempt(s): %s", state.attempt + 1, err,
                        )
                    raise err.into_error(state.attempt + 1, self.provider) from err
                _logger.warning(
                    "Attempt %d/%d failed (%s: %s), retrying in %.2fs...",
                    state.attempt + 1, self.spec.max_attempts,
                    err.kind.value, err, nxt.delay,
                )
            await guarded(self._sleep(nxt.delay), cancel)
            state = nxt
