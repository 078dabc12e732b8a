"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax

from storyforge.errors import PipelineError
from storyforge.llm.types import AssembledResponse


class OutputFormatter:
    """Rich-based output formatting for the storyforge CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_json(self, data: Any) -> None:
        text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        self.console.print(Syntax(text, "json", theme="monokai"))

    def format_config(self, config: dict) -> None:
        self.format_json(config)

    def format_text(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    def format_error(self, exc: BaseException) -> None:
        if isinstance(exc, PipelineError):
            body = f"[bold]{exc.code}[/bold]: {escape(str(exc))}"
            text_preview = getattr(exc, "preview", "")
            if text_preview:
                body += f"\n\n[dim]Response:[/dim] {escape(text_preview)}"
        else:
            body = escape(str(exc))
        self.console.print(Panel(body, title="Error", border_style="red"))

    def format_summary(self, response: AssembledResponse) -> None:
        parts = [f"provider={response.provider}"]
        if response.usage is not None:
            parts.append(
                f"tokens={response.usage.prompt_tokens}+{response.usage.completion_tokens}"
            )
        if response.tool_calls:
            parts.append(f"tool_calls={len(response.tool_calls)}")
        if response.session:
            parts.append(f"session={response.session}")
        self.console.print(f"[dim]{' '.join(parts)}[/dim]")
