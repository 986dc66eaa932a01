#!/usr/bin/env python3
"""Main entry point for Overlay Emotes diagnostics."""

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .__version__ import __version__
from .api.base import EmoteApiClient
from .core.models import StreamPlatform
from .core.settings import DEFAULT_PROVIDER_ORDER, EmoteSettings
from .emotes.cache import EmoteCache
from .emotes.models import LoadSummary
from .emotes.orchestrator import EmoteFetchOrchestrator
from .emotes.provider import BaseEmoteProvider, create_providers

console = Console()

app = typer.Typer(
    name="overlay-emotes",
    help="Emote catalog diagnostics",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Suppress noisy third-party loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


@dataclass
class DiagnosticRow:
    """One provider/scope line of the diagnostic report."""

    provider: str
    scope: str
    status: str  # "ok", "failed", "disabled"
    count: int = 0
    detail: str = ""


def _row_from_summary(provider: str, scope: str, summary: LoadSummary) -> DiagnosticRow:
    if provider in summary.skipped:
        return DiagnosticRow(provider, scope, "disabled", detail=str(summary.skipped[provider]))
    if provider in summary.failures:
        error = summary.failures[provider]
        return DiagnosticRow(provider, scope, "failed", detail=f"{error.kind}: {error}")
    return DiagnosticRow(provider, scope, "ok", count=summary.loaded.get(provider, 0))


async def run_diagnostics(
    settings: EmoteSettings,
    providers: list[BaseEmoteProvider],
    channel: str | None = None,
    platform: StreamPlatform = StreamPlatform.TWITCH,
) -> list[DiagnosticRow]:
    """Preload each provider on its own and report what happened."""
    cache = EmoteCache(ttl_hours=settings.cache_ttl_hours, max_entries=settings.cache_max_entries)
    orchestrator = EmoteFetchOrchestrator(cache, providers, settings=settings)
    rows: list[DiagnosticRow] = []
    try:
        for provider in providers:
            summary = await orchestrator.preload_globals([provider])
            rows.append(_row_from_summary(provider.name, "global", summary))
            if channel:
                summary = await orchestrator.preload_channel(channel, [provider], platform=platform)
                rows.append(_row_from_summary(provider.name, f"channel:{channel}", summary))
    finally:
        await orchestrator.close()
    return rows


def _render(rows: list[DiagnosticRow]) -> None:
    table = Table(title="Emote providers")
    table.add_column("Provider", style="bold")
    table.add_column("Scope")
    table.add_column("Status")
    table.add_column("Emotes", justify="right")
    table.add_column("Detail", overflow="fold")
    styles = {"ok": "green", "failed": "red", "disabled": "yellow"}
    for row in rows:
        style = styles.get(row.status, "")
        table.add_row(
            row.provider,
            row.scope,
            f"[{style}]{row.status}[/{style}]",
            str(row.count),
            row.detail,
        )
    console.print(table)

    tested = [row for row in rows if row.status != "disabled"]
    ok = [row for row in tested if row.status == "ok"]
    total = sum(row.count for row in ok)
    console.print(f"Total emotes loaded: {total} ({len(ok)}/{len(tested)} fetches succeeded)")


@app.command()
def diagnose(
    provider: Optional[list[str]] = typer.Option(
        None, "--provider", "-p", help="Provider to test (repeatable); defaults to enabled ones"
    ),
    channel: Optional[str] = typer.Option(
        None, "--channel", "-c", help="Also preload this channel's emotes"
    ),
    platform: StreamPlatform = typer.Option(
        StreamPlatform.TWITCH, "--platform", help="Platform the channel lives on"
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Settings JSON file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Test every configured emote provider in isolation."""
    setup_logging(verbose)
    settings = EmoteSettings.load(config)

    names = provider or settings.enabled_providers()
    unknown = [name for name in names if name not in DEFAULT_PROVIDER_ORDER]
    if unknown:
        console.print(f"[red]Unknown provider(s): {', '.join(unknown)}[/red]")
        raise typer.Exit(code=2)

    client = EmoteApiClient(timeout=settings.attempt_timeout_ms / 1000)
    providers = create_providers(settings, client, names=names)
    rows = asyncio.run(run_diagnostics(settings, providers, channel=channel, platform=platform))
    _render(rows)

    tested = [row for row in rows if row.status != "disabled"]
    if tested and all(row.status == "failed" for row in tested):
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"overlay-emotes v{__version__}")


def main() -> int:
    """Main entry point."""
    app()
    return 0


if __name__ == "__main__":
    sys.exit(main())
