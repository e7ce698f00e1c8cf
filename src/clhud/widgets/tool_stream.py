"""Recent tool calls widget."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from rich.markup import escape
from textual.widgets import Static

from ..models import ToolEntry, ToolStatus

VISIBLE_TOOLS = 10


def format_duration(ms: float) -> str:
    """Human duration: 42s, 3m 5s, 1h 12m."""
    if ms < 60_000:
        return f"{round(ms / 1000)}s"
    minutes = int(ms // 60_000)
    seconds = round((ms % 60_000) / 1000)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    return f"{minutes // 60}h {minutes % 60}m"


def _short_target(target: str) -> str:
    # File paths are shown by name only; commands and patterns as-is
    if target.startswith("/"):
        return Path(target).name
    return target


STATUS_ICONS = {
    ToolStatus.RUNNING: "[yellow]◐[/]",
    ToolStatus.COMPLETE: "[green]✓[/]",
    ToolStatus.ERROR: "[red]✗[/]",
}


def format_tool_line(entry: ToolEntry, now: datetime) -> str:
    """One markup line for a tool entry. Tool names and targets are escaped."""
    icon = STATUS_ICONS[entry.status]
    name = escape(f"{entry.tool:8s}")
    target = escape(_short_target(entry.target))

    if entry.duration_ms is not None:
        if entry.duration_ms < 1000:
            timing = f" [dim]{entry.duration_ms}ms[/]"
        else:
            timing = f" [dim]{format_duration(entry.duration_ms)}[/]"
    else:
        elapsed = (now - entry.started_at).total_seconds() * 1000
        timing = f" [dim](running {format_duration(max(elapsed, 0))})[/]"

    return f"{icon} [cyan]{name}[/] {target}{timing}"


class ToolStream(Static):
    """The most recent tool invocations, newest last."""

    def update_tools(self, tools: Sequence[ToolEntry], now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        lines: list[str] = ["[bold]Tools[/]"]

        if not tools:
            lines.append("[dim]No tool calls yet[/]")
            self.update("\n".join(lines))
            return

        for entry in tools[-VISIBLE_TOOLS:]:
            lines.append(format_tool_line(entry, now))

        self.update("\n".join(lines))
