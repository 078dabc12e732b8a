"""
Main CLI application for storyforge.

Usage:
    sf sanitize [FILE]
    sf extract [FILE] [--strategy first_last|balanced]
    sf chat PROMPT [--system TEXT] [--no-stream] [--profile NAME]
    sf config show
    sf version
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from storyforge.cli.output import OutputFormatter
from storyforge.config import build_transport, load_config, sampling_options
from storyforge.errors import PipelineError
from storyforge.llm.types import GenerationRequest, Message, StreamFragment, TextDelta
from storyforge.parsing.extractor import STRATEGIES, extract_json_object
from storyforge.parsing.sanitizer import sanitize

app = typer.Typer(name="sf", help="Storyforge - structured LLM generation toolkit")
config_app = typer.Typer(help="Configuration management")

app.add_typer(config_app, name="config")

__version__ = "0.1.0"

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "storyforge.yaml",
        Path.cwd() / "storyforge.yml",
        Path.home() / ".config" / "storyforge" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _read_input(path: Optional[Path]) -> str:
    if path is None:
        return sys.stdin.read()
    return path.read_text(encoding="utf-8", errors="ignore")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.callback()
def root(
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level"),
):
    """Storyforge - structured LLM generation toolkit."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("sanitize")
def sanitize_cmd(
    file: Optional[Path] = typer.Argument(None, help="Input file (default: stdin)"),
):
    """Repair near-JSON model output and print it."""
    OutputFormatter(console).format_text(sanitize(_read_input(file)))


@app.command("extract")
def extract_cmd(
    file: Optional[Path] = typer.Argument(None, help="Input file (default: stdin)"),
    strategy: str = typer.Option("first_last", help="Extraction strategy: first_last, balanced"),
):
    """Sanitize, extract, and pretty-print the JSON object in model output."""
    formatter = OutputFormatter(console)
    if strategy not in STRATEGIES:
        console.print(f"[red]Unknown strategy:[/red] {strategy}")
        raise typer.Exit(2)
    try:
        extracted = extract_json_object(sanitize(_read_input(file)), strategy)
        data = json.loads(extracted)
    except (PipelineError, ValueError) as e:
        formatter.format_error(e)
        raise typer.Exit(1)
    formatter.format_json(data)


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User prompt"),
    system: str = typer.Option("", "--system", help="System prompt"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Wait for the whole response"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
    model: Optional[str] = typer.Option(None, help="Override the configured model"),
):
    """Send one prompt to the configured provider."""
    formatter = OutputFormatter(console)
    cfg = load_config(_get_config_path(), profile=profile, cli_overrides={"llm.model": model})
    transport = build_transport(cfg)
    request = GenerationRequest(
        system_prompt=system,
        messages=(Message(role="user", content=prompt),),
        options=sampling_options(cfg, stream=not no_stream),
    )

    def on_fragment(fragment: StreamFragment) -> None:
        if isinstance(fragment, TextDelta):
            console.print(fragment.text, end="", markup=False, highlight=False, soft_wrap=True)

    try:
        if no_stream:
            response = asyncio.run(transport.complete(request))
            formatter.format_text(response.text)
        else:
            response = asyncio.run(transport.stream(request, on_fragment))
            console.print()
    except PipelineError as e:
        formatter.format_error(e)
        raise typer.Exit(1)
    formatter.format_summary(response)


@config_app.command("show")
def config_show(
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Show effective config."""
    cfg = load_config(_get_config_path(), profile=profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@app.command()
def version():
    """Show version."""
    console.print(f"storyforge v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
