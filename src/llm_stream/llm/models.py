"""Static capability metadata keyed by model name."""

from __future__ import annotations

from dataclasses import dataclass

BASE_INSTRUCTIONS = (
    "You are a helpful coding assistant. Answer concisely, "
    "and call the provided tools when they help complete the task."
)

# Appended for families that do not know the apply_patch tool natively.
APPLY_PATCH_INSTRUCTIONS = (
    "\n\nTo edit files, call the apply_patch tool with a unified patch. "
    "Never rewrite whole files when a patch will do."
)

AUTO_COMPACT_RATIO = 0.8


@dataclass(frozen=True)
class ModelFamily:
    """What a group of models supports."""

    slug: str
    family: str
    base_instructions: str = BASE_INSTRUCTIONS
    supports_reasoning_summaries: bool = False
    needs_special_apply_patch_instructions: bool = False
    context_window: int | None = None

    @property
    def instructions(self) -> str:
        if self.needs_special_apply_patch_instructions:
            return self.base_instructions + APPLY_PATCH_INSTRUCTIONS
        return self.base_instructions


# (prefix, family, reasoning summaries, apply_patch preamble, context window)
_FAMILIES: tuple[tuple[str, str, bool, bool, int | None], ...] = (
    ("gpt-5-codex", "gpt-5-codex", True, False, 272_000),
    ("gpt-5", "gpt-5", True, False, 272_000),
    ("codex-", "codex", True, False, 200_000),
    ("o3", "o3", True, False, 200_000),
    ("o4-mini", "o4-mini", True, False, 200_000),
    ("gpt-4.1", "gpt-4.1", False, True, 1_047_576),
    ("gpt-4o", "gpt-4o", False, True, 128_000),
    ("gpt-4-turbo", "gpt-4-turbo", False, True, 128_000),
    ("gpt-4", "gpt-4", False, True, 8_192),
    ("gpt-3.5", "gpt-3.5", False, True, 16_385),
    ("gpt-oss", "gpt-oss", True, True, 96_000),
)


def find_family(model: str) -> ModelFamily | None:
    """Family of the longest prefix matching *model*, or ``None``."""
    best: tuple[str, str, bool, bool, int | None] | None = None
    for row in _FAMILIES:
        if model.startswith(row[0]) and (best is None or len(row[0]) > len(best[0])):
            best = row
    if best is None:
        return None
    _, family, summaries, patch, window = best
    return ModelFamily(
        slug=model,
        family=family,
        supports_reasoning_summaries=summaries,
        needs_special_apply_patch_instructions=patch,
        context_window=window,
    )


def model_family(model: str) -> ModelFamily:
    """Like ``find_family`` but falls back to a plain family for unknown models."""
    return find_family(model) or ModelFamily(slug=model, family=model)


def context_window(model: str) -> int | None:
    family = find_family(model)
    return family.context_window if family else None


def auto_compact_token_limit(model: str) -> int | None:
    window = context_window(model)
    return int(window * AUTO_COMPACT_RATIO) if window else None
