"""CLI commands for contextguard."""

import asyncio
import json
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from contextguard import __version__, __logo__

app = typer.Typer(
    name="contextguard",
    help=f"{__logo__} contextguard - adaptive context compaction",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} contextguard v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logs"),
):
    """contextguard - adaptive context compaction."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


@app.command()
def window(model: str = typer.Argument(..., help="Model identifier")):
    """Show the context window used for a model."""
    from contextguard.compaction.context_window import resolve_context_window_tokens
    from contextguard.config.loader import load_config

    config = load_config()
    tokens = resolve_context_window_tokens(model, config.compaction.context_window)
    console.print(f"{model}: [bold]{tokens:,}[/bold] tokens")


@app.command()
def compact(
    transcript: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSONL transcript"),
    model: str | None = typer.Option(None, "--model", "-m", help="Summarization model"),
    keep_recent_tokens: int = typer.Option(
        20000, "--keep-recent-tokens", help="Tokens of recent history kept verbatim"
    ),
    previous_summary_file: Path | None = typer.Option(
        None, "--previous-summary-file", exists=True, dir_okay=False,
        help="Summary from an earlier cycle",
    ),
    instructions: str | None = typer.Option(None, "--instructions", "-i", help="Extra focus"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the artifact as JSON"),
):
    """Compact a transcript and print the summary."""
    from contextguard.compaction.service import CompactionService
    from contextguard.config.loader import load_config
    from contextguard.memory.processor import MemoryExtractor, MemoryProcessor
    from contextguard.providers.litellm_provider import LiteLLMProvider, env_api_key
    from contextguard.session.state import CompactionSession
    from contextguard.session.transcript import load_transcript

    config = load_config()
    model = model or config.model

    messages = load_transcript(transcript)
    session = CompactionSession(key=transcript.stem)
    if previous_summary_file:
        session.previous_summary = previous_summary_file.read_text(encoding="utf-8")

    preparation = session.prepare(
        messages,
        keep_recent_tokens=keep_recent_tokens,
        reserve_tokens=config.compaction.reserve_tokens_floor,
    )
    if preparation is None:
        console.print("[yellow]Nothing to compact: transcript fits in the kept window.[/yellow]")
        raise typer.Exit()

    provider = LiteLLMProvider(
        api_key=config.get_api_key(),
        api_base=config.get_api_base(),
        default_model=model,
    )
    memory = MemoryProcessor(config.memory) if config.memory.enabled else None
    service = CompactionService(
        provider=provider,
        model=model,
        config=config.compaction,
        credential_resolver=lambda m: config.get_api_key() or env_api_key(m),
        memory=memory,
    )

    async def run():
        if memory is not None:
            extractor = MemoryExtractor(
                config.memory, client=memory.client, background=memory.background
            )
            scheduled = sum(session.observe(extractor, message) for message in messages)
            logger.debug(f"Scheduled {scheduled} memory extraction(s) for {session.key}")
        artifact = await session.compact(service, preparation, custom_instructions=instructions)
        if memory is not None:
            memory.store_summary(artifact.summary)
            await memory.background.drain()
        return artifact

    artifact = asyncio.run(run())

    table = Table(show_header=False, box=None)
    table.add_row("Summarized", f"{len(preparation.messages_to_summarize)} messages")
    table.add_row("Turn prefix", f"{len(preparation.turn_prefix_messages)} messages")
    table.add_row("First kept", str(artifact.first_kept_entry_id))
    table.add_row("Tokens before", f"{artifact.tokens_before:,}")
    if artifact.dropped_chunks:
        table.add_row(
            "Pruned", f"{artifact.dropped_chunks} chunk(s), {artifact.dropped_messages} messages"
        )
    if artifact.fallback:
        table.add_row("Status", "[yellow]fallback summary[/yellow]")
    console.print(table)
    console.print(Panel(artifact.summary, title="Summary"))

    if output:
        output.write_text(
            json.dumps(
                {
                    "summary": artifact.summary,
                    "firstKeptEntryId": artifact.first_kept_entry_id,
                    "tokensBefore": artifact.tokens_before,
                    "details": {
                        "readFiles": artifact.details.read_files,
                        "modifiedFiles": artifact.details.modified_files,
                    },
                },
                indent=2,
            ),
            encoding="utf-8",
        )
        console.print(f"[green]✓[/green] Wrote {output}")


if __name__ == "__main__":
    app()
