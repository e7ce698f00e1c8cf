"""Context window meter widget."""

from __future__ import annotations

from collections.abc import Sequence

from textual.widgets import Static

from ..models import ContextHealth, ContextSource, ContextStatus
from ..pricing import format_tokens

SPARK_BLOCKS = "▁▂▃▄▅▆▇█"


def sparkline(data: Sequence[int], width: int = 20) -> str:
    """Render the last ``width`` samples as block characters, left-padded with ─."""
    if not data:
        return "─" * width

    samples = list(data[-width:])
    low, high = min(samples), max(samples)
    span = high - low

    chars = []
    for value in samples:
        if span == 0:
            chars.append(SPARK_BLOCKS[0])
            continue
        index = int((value - low) / span * len(SPARK_BLOCKS))
        chars.append(SPARK_BLOCKS[min(index, len(SPARK_BLOCKS) - 1)])

    return "─" * (width - len(samples)) + "".join(chars)


class ContextMeter(Static):
    """Bar, token counts, burn rate and trend for the context window."""

    BAR_WIDTH = 20
    FILLED_CHAR = "█"
    EMPTY_CHAR = "░"

    STATUS_COLORS = {
        ContextStatus.HEALTHY: "green",
        ContextStatus.WARNING: "yellow",
        ContextStatus.CRITICAL: "red",
    }

    def update_context(self, context: ContextHealth) -> None:
        color = self.STATUS_COLORS[context.status]
        lines: list[str] = []

        header = "[bold]Context[/]"
        if context.source == ContextSource.ESTIMATE:
            header += " [dim](est)[/]"
        if context.should_compact:
            header += " [red bold]⚠ COMPACT[/]"
        lines.append(header)

        filled = round(context.percent / 100 * self.BAR_WIDTH)
        filled = max(0, min(filled, self.BAR_WIDTH))
        bar = self.FILLED_CHAR * filled
        empty = self.EMPTY_CHAR * (self.BAR_WIDTH - filled)
        lines.append(f"[{color}]{bar}[/][dim]{empty}[/] [{color}]{context.percent:.0f}%[/]")

        lines.append(
            f"[dim]{format_tokens(context.tokens)} used · {format_tokens(context.remaining)} left[/]"
        )

        burn = f"{format_tokens(context.burn_rate)}/min" if context.burn_rate else "--"
        burn_color = "yellow" if context.burn_rate > 5000 else "white"
        line = f"[dim]Burn:[/] [{burn_color}]{burn}[/]"

        breakdown = context.breakdown
        total = breakdown.tool_outputs + breakdown.tool_inputs + breakdown.messages
        if total > 0:
            out_pct = round(breakdown.tool_outputs / total * 100)
            in_pct = round(breakdown.tool_inputs / total * 100)
            line += f" [dim]· Out:{out_pct}% In:{in_pct}%[/]"
        lines.append(line)

        lines.append(f"[cyan]{sparkline(context.history, self.BAR_WIDTH)}[/]")

        self.update("\n".join(lines))
