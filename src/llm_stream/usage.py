"""Token usage accounting across turns of a session."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from llm_stream.types import TokenUsage


@dataclass(frozen=True)
class UsageEntry:
    usage: TokenUsage
    timestamp: float
    turn_id: str | None = None


class TokenUsageTracker:
    """Aggregate ``TokenUsage`` per turn and flag when context should be compacted.

    Parameters
    ----------
    context_window:
        Model context size in tokens, if known.
    auto_compact_limit:
        ``should_compact()`` turns true once the last turn's ``total_tokens``
        reaches this value.
    max_history:
        Number of per-turn entries kept for ``history()``.
    """

    def __init__(
        self,
        context_window: int | None = None,
        auto_compact_limit: int | None = None,
        *,
        max_history: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.context_window = context_window
        self.auto_compact_limit = auto_compact_limit
        self._clock = clock
        self._history: deque[UsageEntry] = deque(maxlen=max_history)
        self.total = TokenUsage()
        self.last: TokenUsage | None = None

    def update(self, usage: TokenUsage, turn_id: str | None = None) -> TokenUsage:
        """Record one turn's usage and return the new session total."""
        self.last = usage
        self.total = self.total + usage
        self._history.append(UsageEntry(usage, self._clock(), turn_id))
        return self.total

    def history(self, since: float | None = None) -> list[UsageEntry]:
        if since is None:
            return list(self._history)
        return [e for e in self._history if e.timestamp >= since]

    def usage_since(self, since: float) -> TokenUsage:
        total = TokenUsage()
        for entry in self.history(since):
            total = total + entry.usage
        return total

    def should_compact(self) -> bool:
        if not self.auto_compact_limit or self.last is None:
            return False
        return self.last.total_tokens >= self.auto_compact_limit

    def remaining_context(self) -> int | None:
        """Tokens left in the context window after the last turn."""
        if not self.context_window:
            return None
        used = self.last.total_tokens if self.last else 0
        return max(self.context_window - used, 0)

    def usage_percentage(self) -> float:
        if not self.context_window or self.last is None:
            return 0.0
        return min(self.last.total_tokens / self.context_window * 100, 100.0)

    def reset(self) -> None:
        self._history.clear()
        self.total = TokenUsage()
        self.last = None
