"""Sub-agent list widget."""

from __future__ import annotations

from collections.abc import Sequence

from rich.markup import escape
from textual.widgets import Static

from ..models import AgentEntry, AgentStatus
from .tool_stream import format_duration


class AgentList(Static):

    def update_agents(self, agents: Sequence[AgentEntry]) -> None:
        if not agents:
            self.update("")
            return

        lines: list[str] = ["[bold]Agents[/]"]
        for agent in agents:
            if agent.status == AgentStatus.RUNNING:
                icon = "[yellow]◐[/]"
                timing = ""
            else:
                icon = "[green]✓[/]"
                timing = ""
                if agent.ended_at is not None:
                    ms = (agent.ended_at - agent.started_at).total_seconds() * 1000
                    timing = f" [dim]{format_duration(ms)}[/]"

            description = escape(agent.description[:30])
            lines.append(f"{icon} [magenta]{escape(agent.type)}[/] {description}{timing}")

        self.update("\n".join(lines))
