"""Shared fixtures: providers, a recording sleep and mock-transport clients."""

from __future__ import annotations

import random
from typing import Any, Callable

import httpx
import pytest

from helpers import BASE_URL, SleepRecorder
from llm_stream.config import ProviderSpec, RetrySpec, WireApi
from llm_stream.llm.client import ModelClient


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def provider() -> ProviderSpec:
    return ProviderSpec(
        name="test",
        base_url=BASE_URL,
        api_key="test-key",
        stream_idle_timeout=5.0,
        retry=RetrySpec(base_delay=1.0, multiplier=2.0, max_delay=60.0,
                        jitter_fraction=0.1, max_attempts=4),
    )


@pytest.fixture
def chat_provider(provider: ProviderSpec) -> ProviderSpec:
    return ProviderSpec(
        name="test-chat",
        base_url=BASE_URL,
        wire_api=WireApi.CHAT,
        api_key="test-key",
        stream_idle_timeout=5.0,
        retry=provider.retry,
    )


@pytest.fixture
def make_client(sleeps: SleepRecorder) -> Callable[..., ModelClient]:
    """Build a ``ModelClient`` whose HTTP traffic goes to *handler*."""

    def _make(
        provider: ProviderSpec,
        handler: Callable[[httpx.Request], httpx.Response],
        model: str = "gpt-5",
        **kwargs: Any,
    ) -> ModelClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ModelClient(
            provider, model,
            http_client=http, rng=random.Random(0), sleep=sleeps, **kwargs,
        )

    return _make
