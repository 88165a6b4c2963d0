"""Exception hierarchy for llm-stream."""

from __future__ import annotations


class LLMStreamError(Exception):
    """Base exception for all llm-stream errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(LLMStreamError):
    """Configuration validation or resolution failed."""


class InvalidRequestError(LLMStreamError):
    """A request could not be built from the given prompt."""


class EmptyInputError(InvalidRequestError):
    """The prompt has no input items."""

    def __init__(self) -> None:
        super().__init__(
            "Prompt.input is empty",
            hint="add at least one conversation item before streaming",
        )


class RequestFailedError(LLMStreamError):
    """The provider rejected the request, or every attempt failed.

    ``kind`` is ``"http"``, ``"transport"`` or ``"fatal"``.  ``retryable``
    is true when the last failure was retryable, i.e. the attempt budget ran
    out rather than the provider refusing outright.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        attempts: int,
        status_code: int | None = None,
        retry_after: float | None = None,
        retryable: bool = False,
        provider: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind
        self.attempts = attempts
        self.status_code = status_code
        self.retry_after = retry_after
        self.retryable = retryable
        self.provider = provider

    def __str__(self) -> str:
        base = super().__str__()
        plural = "attempt" if self.attempts == 1 else "attempts"
        return f"{base} ({self.kind}, after {self.attempts} {plural})"


class StreamProtocolError(LLMStreamError):
    """The provider accepted the request but its event stream was unusable."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.attempts = attempts


class ResponseFailedError(StreamProtocolError):
    """The stream carried an explicit failure payload."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        response_id: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, attempts=attempts)
        self.code = code
        self.response_id = response_id


class StreamClosedError(StreamProtocolError):
    """The stream ended without a completion payload."""

    def __init__(self, message: str = "stream closed before completion", **kwargs) -> None:
        super().__init__(message, **kwargs)


class StreamInterruptedError(LLMStreamError):
    """The connection failed after events had already been delivered."""

    def __init__(self, message: str, *, attempts: int, events_delivered: int) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.events_delivered = events_delivered


class StreamCancelledError(LLMStreamError):
    """The caller cancelled the stream."""
