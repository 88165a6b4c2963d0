"""Provider and client configuration for llm-stream.

Config discovery (first match wins):
  1. explicit ``path`` argument (``--config`` flag)
  2. ``./llm_stream.yaml``
  3. ``~/.config/llm-stream/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import enum
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import yaml

from llm_stream.errors import ConfigurationError

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

class WireApi(enum.Enum):
    """Request/response schema spoken by a provider."""

    RESPONSES = "responses"
    CHAT = "chat"

    @classmethod
    def parse(cls, value: str | WireApi) -> WireApi:
        if isinstance(value, WireApi):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown wire_api: {value!r}",
                hint="use 'responses' or 'chat'",
            ) from None


@dataclass(frozen=True)
class RetrySpec:
    """Backoff policy for one ``stream()`` call."""

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter_fraction: float = 0.1
    max_attempts: int = 4

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("retry.max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must be >= 0")
        if self.multiplier <= 0:
            raise ConfigurationError("retry.multiplier must be > 0")
        if not 0 <= self.jitter_fraction <= 1:
            raise ConfigurationError("retry.jitter_fraction must be within [0, 1]")


# Azure OpenAI deployments reject Responses requests unless store=true.
_AZURE_URL_PATTERN = re.compile(r"(openai\.azure\.|azure-api\.|azurefd\.|cognitiveservices\.azure\.)")


@dataclass(frozen=True)
class ProviderSpec:
    """A named model provider endpoint."""

    name: str = "openai"
    base_url: str = "https://api.openai.com/v1"
    wire_api: WireApi = WireApi.RESPONSES
    api_key: str | None = None
    env_key: str | None = "OPENAI_API_KEY"
    organization: str | None = None
    query_params: dict[str, str] = field(default_factory=dict)
    http_headers: dict[str, str] = field(default_factory=dict)
    env_http_headers: dict[str, str] = field(default_factory=dict)
    requires_api_key: bool = True
    stream_idle_timeout: float = 300.0
    retry: RetrySpec = field(default_factory=RetrySpec)

    @property
    def max_retries(self) -> int:
        return self.retry.max_attempts - 1

    def resolve_api_key(self) -> str | None:
        """Explicit key, else the value of ``env_key`` (if set)."""
        if self.api_key:
            return self.api_key
        if self.env_key:
            value = os.environ.get(self.env_key, "").strip()
            return value or None
        return None

    def resolve_env_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        for header, var in self.env_http_headers.items():
            value = os.environ.get(var, "").strip()
            if value:
                headers[header] = value
        return headers

    def url_for(self, path: str) -> str:
        url = f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        if self.query_params:
            url = f"{url}?{urlencode(self.query_params)}"
        return url

    def is_azure_responses_endpoint(self) -> bool:
        return (
            self.wire_api is WireApi.RESPONSES
            and bool(_AZURE_URL_PATTERN.search(self.base_url.lower()))
        )


BUILTIN_PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(),
    "openai-chat": ProviderSpec(name="openai-chat", wire_api=WireApi.CHAT),
}


@dataclass
class ClientConfig:
    """Top-level config for llm-stream."""

    # Active provider name
    profile: str = "openai"

    providers: dict[str, ProviderSpec] = field(
        default_factory=lambda: dict(BUILTIN_PROVIDERS)
    )

    model: str = "gpt-5"
    reasoning_effort: str | None = None  # "minimal" | "low" | "medium" | "high"
    reasoning_summary: str | None = None  # "auto" | "concise" | "detailed" | "none"
    verbosity: str | None = None  # "low" | "medium" | "high"
    conversation_id: str | None = None

    @property
    def active_provider(self) -> ProviderSpec:
        try:
            return self.providers[self.profile]
        except KeyError:
            raise ConfigurationError(
                f"Unknown provider profile: {self.profile!r}",
                hint=f"known profiles: {', '.join(sorted(self.providers))}",
            ) from None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./llm_stream.yaml"),
    Path.home() / ".config" / "llm-stream" / "config.yaml",
]


def _mapping(raw: Any, what: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{what} must be a mapping, got {type(raw).__name__}")
    return raw


def _parse_retry(raw: Any) -> RetrySpec:
    raw = _mapping(raw, "retry")
    values: dict[str, Any] = {}
    for key in RetrySpec.__dataclass_fields__:
        if raw.get(key) is not None:
            values[key] = raw[key]
    try:
        return RetrySpec(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid retry settings: {e}") from e


def _parse_provider(name: str, raw: Any) -> ProviderSpec:
    raw = _mapping(raw, f"providers.{name}")
    base = BUILTIN_PROVIDERS.get(name, ProviderSpec(name=name))

    retry = base.retry
    if "retry" in raw or "request_max_retries" in raw:
        retry_raw = dict(_mapping(raw.get("retry"), f"providers.{name}.retry"))
        if raw.get("request_max_retries") is not None:
            retry_raw.setdefault("max_attempts", int(raw["request_max_retries"]) + 1)
        retry = _parse_retry(retry_raw)

    try:
        idle = float(raw.get("stream_idle_timeout", base.stream_idle_timeout))
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"providers.{name}.stream_idle_timeout must be a number",
        ) from None
    if idle <= 0:
        raise ConfigurationError(f"providers.{name}.stream_idle_timeout must be > 0")

    return ProviderSpec(
        name=name,
        base_url=raw.get("base_url", base.base_url),
        wire_api=WireApi.parse(raw.get("wire_api", base.wire_api)),
        api_key=raw.get("api_key", base.api_key),
        env_key=raw.get("env_key", base.env_key),
        organization=raw.get("organization", base.organization),
        query_params=dict(_mapping(raw.get("query_params"), "query_params")) or dict(base.query_params),
        http_headers=dict(_mapping(raw.get("http_headers"), "http_headers")) or dict(base.http_headers),
        env_http_headers=(
            dict(_mapping(raw.get("env_http_headers"), "env_http_headers"))
            or dict(base.env_http_headers)
        ),
        requires_api_key=bool(raw.get("requires_api_key", base.requires_api_key)),
        stream_idle_timeout=idle,
        retry=retry,
    )


def load_config(path: str | Path | None = None) -> ClientConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    ClientConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return ClientConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return ClientConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    raw = _mapping(raw, "config")

    providers = dict(BUILTIN_PROVIDERS)
    for name, praw in _mapping(raw.get("providers"), "providers").items():
        providers[name] = _parse_provider(name, praw)

    defaults = ClientConfig()
    cfg = ClientConfig(
        profile=raw.get("profile", defaults.profile),
        providers=providers,
        model=raw.get("model", defaults.model),
        reasoning_effort=raw.get("reasoning_effort"),
        reasoning_summary=raw.get("reasoning_summary"),
        verbosity=raw.get("verbosity"),
        conversation_id=raw.get("conversation_id"),
    )
    if cfg.profile not in providers:
        raise ConfigurationError(
            f"Unknown provider profile: {cfg.profile!r}",
            hint=f"known profiles: {', '.join(sorted(providers))}",
        )
    return cfg
