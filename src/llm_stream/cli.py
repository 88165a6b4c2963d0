"""Command-line interface for llm-stream."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from llm_stream.config import ClientConfig, load_config
from llm_stream.errors import LLMStreamError
from llm_stream.llm.client import ModelClient
from llm_stream.llm.models import auto_compact_token_limit, find_family
from llm_stream.llm.rate_limits import format_window
from llm_stream.types import (
    Completed,
    EventType,
    Prompt,
    RateLimitSnapshot,
    ResponseItem,
    TokenUsage,
)

console = Console()


def _open_client(config: ClientConfig) -> ModelClient:
    return ModelClient.from_config(config)


def _usage_table(usage: TokenUsage) -> Table:
    table = Table(title="Token usage", show_header=False, box=None)
    table.add_column("field", style="dim")
    table.add_column("tokens", justify="right")
    table.add_row("input", str(usage.input_tokens))
    table.add_row("cached input", str(usage.cached_input_tokens))
    table.add_row("output", str(usage.output_tokens))
    table.add_row("reasoning", str(usage.reasoning_output_tokens))
    table.add_row("total", str(usage.total_tokens))
    return table


def _print_rate_limits(snapshot: RateLimitSnapshot) -> None:
    for label, window in (("primary", snapshot.primary), ("secondary", snapshot.secondary)):
        if window is None:
            continue
        style = "yellow" if window.used_percent >= 80 else "dim"
        console.print(f"[{style}]Rate limit ({label}): {format_window(window)}[/{style}]")


async def _run_chat(config: ClientConfig, prompt: Prompt) -> Completed | None:
    completed: Completed | None = None
    snapshot: RateLimitSnapshot | None = None
    async with _open_client(config) as client:
        async with client.stream(prompt) as stream:
            async for event in stream:
                if event.type is EventType.OUTPUT_TEXT_DELTA:
                    console.print(event.delta, end="", markup=False, highlight=False)
                elif event.type in (
                    EventType.REASONING_CONTENT_DELTA,
                    EventType.REASONING_SUMMARY_DELTA,
                ):
                    console.print(event.delta, end="", style="dim italic",
                                  markup=False, highlight=False)
                elif event.type is EventType.OUTPUT_ITEM_DONE and event.item.type == "function_call":
                    console.print(f"\n[cyan]> {event.item.name}({event.item.arguments})[/cyan]")
                elif event.type is EventType.RATE_LIMITS:
                    snapshot = event.snapshot
                elif event.type is EventType.COMPLETED:
                    completed = event
    console.print()
    if completed is not None and completed.token_usage is not None:
        console.print(_usage_table(completed.token_usage))
    if snapshot is not None:
        _print_rate_limits(snapshot)
    return completed


@click.group()
def main():
    """llm-stream - stream model turns from OpenAI-compatible endpoints."""


@main.command()
@click.argument("prompt")
@click.option("--config", "-c", "config_path", default=None,
              help="Path to llm_stream.yaml (auto-detected from CWD or ~/.config/llm-stream/)")
@click.option("--profile", "-p", default=None, help="Provider profile")
@click.option("--model", "-m", default=None, help="Model name")
@click.option("--instructions", "-i", default=None, help="Replace the base instructions")
@click.option("--reasoning-effort", default=None,
              type=click.Choice(["minimal", "low", "medium", "high"]))
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def chat(prompt: str, config_path: str | None, profile: str | None, model: str | None,
         instructions: str | None, reasoning_effort: str | None, verbose: bool):
    """Stream a single turn for PROMPT."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        config = load_config(config_path)
        if profile:
            config.profile = profile
        if model:
            config.model = model
        if reasoning_effort:
            config.reasoning_effort = reasoning_effort
        turn = Prompt(
            input=(ResponseItem.user(prompt),),
            base_instructions_override=instructions,
        )
        asyncio.run(_run_chat(config, turn))
    except LLMStreamError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        if e.hint:
            console.print(f"[dim]Hint: {e.hint}[/dim]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


@main.command()
@click.argument("name")
def models(name: str):
    """Show capability metadata for model NAME."""
    family = find_family(name)
    if family is None:
        console.print(f"[yellow]Unknown model: {name}[/yellow]")
        sys.exit(1)
    table = Table(title=name, show_header=False)
    table.add_column("key", style="bold")
    table.add_column("value")
    table.add_row("family", family.family)
    table.add_row("context window", f"{family.context_window:,}" if family.context_window else "-")
    limit = auto_compact_token_limit(name)
    table.add_row("auto-compact limit", f"{limit:,}" if limit else "-")
    table.add_row("reasoning summaries", "yes" if family.supports_reasoning_summaries else "no")
    table.add_row(
        "apply_patch instructions",
        "yes" if family.needs_special_apply_patch_instructions else "no",
    )
    console.print(table)


if __name__ == "__main__":
    main()
