"""Rate-limit extraction from response headers, plus a small history tracker."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from llm_stream.types import RateLimitSnapshot, RateLimitWindow

_logger = logging.getLogger(__name__)

_HEADER_PREFIX = "x-codex"


def _header_names(window: str) -> tuple[str, str, str]:
    return (
        f"{_HEADER_PREFIX}-{window}-used-percent",
        f"{_HEADER_PREFIX}-{window}-window-minutes",
        f"{_HEADER_PREFIX}-{window}-reset-after-seconds",
    )


def _get(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; httpx.Headers is not.
        lowered = name.lower()
        for key, val in headers.items():
            if key.lower() == lowered:
                value = val
                break
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_float(headers: Mapping[str, str], name: str) -> float | None:
    raw = _get(headers, name)
    if raw is None:
        return None
    try:
        number = float(raw)
    except ValueError:
        _logger.debug("Ignoring non-numeric header %s=%r", name, raw)
        return None
    return number if math.isfinite(number) else None


def _parse_int(headers: Mapping[str, str], name: str) -> int | None:
    raw = _get(headers, name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        number = _parse_float(headers, name)
        return int(number) if number is not None else None


def _parse_window(headers: Mapping[str, str], window: str) -> RateLimitWindow | None:
    used_name, minutes_name, reset_name = _header_names(window)
    used_percent = _parse_float(headers, used_name)
    if used_percent is None:
        return None
    return RateLimitWindow(
        used_percent=used_percent,
        window_minutes=_parse_int(headers, minutes_name),
        resets_in_seconds=_parse_int(headers, reset_name),
    )


def parse_rate_limit_snapshot(headers: Mapping[str, str] | None) -> RateLimitSnapshot | None:
    """Read the primary/secondary usage headers.

    Returns ``None`` when neither window reports a usable percentage.
    """
    if not headers:
        return None
    primary = _parse_window(headers, "primary")
    secondary = _parse_window(headers, "secondary")
    if primary is None and secondary is None:
        return None
    return RateLimitSnapshot(primary=primary, secondary=secondary)


def format_window(window: RateLimitWindow) -> str:
    """Human-readable summary, e.g. ``42.5% used (60min window), resets in 30s``."""
    text = f"{window.used_percent:.1f}% used"
    if window.window_minutes:
        text += f" ({window.window_minutes}min window)"
    if window.resets_in_seconds:
        text += f", resets in {window.resets_in_seconds}s"
    return text


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateLimitRecord:
    snapshot: RateLimitSnapshot
    timestamp: float


@dataclass
class RateLimitTracker:
    """Latest snapshot plus a time-bounded history of earlier ones.

    Feed it the ``RateLimits`` events of successive streams.
    """

    approaching_threshold: float = 80.0
    max_history_age: float = 3600.0
    clock: Callable[[], float] = time.time
    _history: list[RateLimitRecord] = field(default_factory=list, init=False, repr=False)

    @property
    def current(self) -> RateLimitSnapshot | None:
        return self._history[-1].snapshot if self._history else None

    def update(self, snapshot: RateLimitSnapshot) -> None:
        self._history.append(RateLimitRecord(snapshot, self.clock()))
        self._prune()

    def history(self, max_age: float | None = None) -> list[RateLimitRecord]:
        cutoff = self.clock() - (max_age if max_age is not None else self.max_history_age)
        return [r for r in self._history if r.timestamp >= cutoff]

    def is_approaching(self, threshold: float | None = None) -> bool:
        current = self.current
        if current is None:
            return False
        limit = self.approaching_threshold if threshold is None else threshold
        return current.is_approaching(limit)

    def reset(self) -> None:
        self._history.clear()

    def summary(self) -> dict[str, Any]:
        current = self.current
        window = current.most_restrictive() if current else None
        return {
            "has_limits": current is not None,
            "is_approaching": self.is_approaching(),
            "most_restrictive": window,
            "next_reset_seconds": window.resets_in_seconds if window else None,
        }

    def _prune(self) -> None:
        cutoff = self.clock() - self.max_history_age
        self._history = [r for r in self._history if r.timestamp >= cutoff]
