#!/usr/bin/env python3
"""
Command line front-end for fuzzfind.

Usage:
    ff search PATTERN                 - Fuzzy find files below the current directory
    ff search PATTERN --dir ~/src     - ... below another directory
    ff search PATTERN --cmd "rg -n ." - ... in the output lines of a command
    ff config                         - Show the effective configuration
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from rich.console import Console
from rich.table import Table
from rich.text import Text
from loguru import logger

from ..daemon.bus import Event
from ..daemon.config import FinderConfig
from ..daemon.main import FinderDaemon, setup_logging

console = Console()

RESULT_TYPES = ["plain", "line", "file_line", "ag", "file", "dir", "buffer"]


def load_config(config_path: Optional[str]) -> FinderConfig:
    return FinderConfig.load(Path(config_path) if config_path else None)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity to stderr")
def cli(verbose: bool):
    """fuzzfind - streaming fuzzy finder."""
    setup_logging("DEBUG" if verbose else "WARNING")


@cli.command()
@click.argument("pattern", default="")
@click.option("--dir", "-d", "directory", default="", help="Directory to walk")
@click.option("--cmd", "-c", "command", help="Shell command producing the candidates")
@click.option("--type", "-t", "result_type", type=click.Choice(RESULT_TYPES), default="plain")
@click.option("--limit", "-l", default=20, help="Max results shown")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def search(
    pattern: str,
    directory: str,
    command: Optional[str],
    result_type: str,
    limit: int,
    config_path: Optional[str]
):
    """Fuzzy find PATTERN and print the best matches."""
    config = load_config(config_path)
    options: Dict[str, Any] = {"type": result_type, "dir": directory}
    if command:
        options["source"] = command

    try:
        result = asyncio.run(run_search(config, options, pattern, limit))
    except KeyboardInterrupt:
        console.print("\n[yellow]Search cancelled[/yellow]")
        return
    display_results(result, pattern)


async def run_search(
    config: FinderConfig,
    options: Dict[str, Any],
    pattern: str,
    limit: int
) -> Optional[Dict[str, Any]]:
    """Drive one finder session in-process and return the last published window."""
    daemon = FinderDaemon(config)
    published = []

    async def on_result(event: Event):
        published.append(event.data)

    daemon.event_bus.subscribe("gui.finder_show_result", on_result)
    await daemon.start()
    try:
        daemon.send("update_max", limit)
        daemon.send("run", options)
        for ch in pattern:
            daemon.send("char", ch)
        await daemon.controller.join()
        await daemon.controller.wait_for_pass()
        await daemon.event_bus.drain()
    finally:
        await daemon.stop()

    logger.debug(f"Finder stats: {daemon.controller.get_stats()}")
    return published[-1] if published else None


def highlight(text: str, positions) -> Text:
    rendered = Text(text)
    for pos in positions:
        if 0 <= pos < len(text):
            rendered.stylize("bold green", pos, pos + 1)
    return rendered


def display_results(data: Optional[Dict[str, Any]], pattern: str):
    """Display the published window in a table."""
    if not data or not data.get("items"):
        console.print("[yellow]No results found[/yellow]")
        return

    table = Table(title=f"'{pattern}': {data.get('total', 0)} matches")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Result", no_wrap=False)

    item_types = data.get("item_types") or []
    rank = data.get("start", 0)
    for i, (text, positions) in enumerate(zip(data["items"], data["matches"])):
        if i < len(item_types) and item_types[i] == "file" and data.get("result_type") == "ag":
            table.add_row("", Text(text, style="bold magenta"))
            continue
        rank += 1
        table.add_row(str(rank), highlight(text, positions))

    console.print(table)


@cli.command(name="config")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def show_config(config_path: Optional[str]):
    """Show the effective configuration."""
    config = load_config(config_path)
    click.echo(yaml.safe_dump(config.model_dump(), default_flow_style=False))


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
