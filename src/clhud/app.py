"""clhud — a heads-up display for a Claude Code session. Main Textual application."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import Footer, Static

from .config import HudConfig, load_config
from .hooks import install_hooks, is_hooks_installed, uninstall_hooks
from .log import configure_logging
from .models import ConnectionStatus
from .monitor import HudSnapshot
from .pricing import format_cost
from .refresh import SessionConfig, SessionSwitcher, read_refresh_descriptor, remove_pid_file, write_pid_file
from .widgets import AgentList, ContextMeter, TodoList, ToolStream
from .widgets.tool_stream import format_duration

logger = logging.getLogger(__name__)

CLOCK_INTERVAL = 1.0  # seconds

CONNECTION_ICONS = {
    ConnectionStatus.CONNECTING: "[yellow]◐[/]",
    ConnectionStatus.CONNECTED: "[green]●[/]",
    ConnectionStatus.DISCONNECTED: "[dim]○[/]",
    ConnectionStatus.ERROR: "[red]✗[/]",
}


class StatusBar(Static):
    """Top line: elapsed time, permission mode, activity, cost, connection."""

    def update_snapshot(self, snapshot: HudSnapshot, now: datetime) -> None:
        state = snapshot.state
        elapsed = (now - state.context.session_start).total_seconds() * 1000

        parts = [f"[bold cyan]Claude HUD[/] [dim]({format_duration(max(elapsed, 0))})[/]"]
        if state.session.permission_mode != "default":
            parts.append(f"[magenta]{state.session.permission_mode}[/]")
        parts.append("[dim]idle[/]" if state.session.is_idle else "[green]working[/]")
        if snapshot.cost.total_cost > 0:
            parts.append(f"[dim]~{format_cost(snapshot.cost.total_cost)}[/]")
        parts.append(CONNECTION_ICONS[snapshot.connection])

        self.update(" · ".join(parts))


class ConnectionNotice(Static):

    def update_connection(self, status: ConnectionStatus) -> None:
        match status:
            case ConnectionStatus.CONNECTING:
                self.update("[yellow]Connecting to session...[/]")
            case ConnectionStatus.DISCONNECTED:
                self.update("[dim]Waiting for session... (run claude or /resume)[/]")
            case ConnectionStatus.ERROR:
                self.update("[red]Event stream error, retrying[/]")
            case _:
                self.update("")


class HudApp(App):
    """Main clhud Textual application."""

    TITLE = "clhud"
    CSS = """
    Screen {
        layout: vertical;
    }

    StatusBar {
        dock: top;
        height: 1;
        background: $accent;
        color: $text;
        padding: 0 1;
    }

    ConnectionNotice {
        height: auto;
        padding: 0 1;
    }

    #panels {
        height: 1fr;
        border: round $panel;
        padding: 0 1;
    }

    #panels Static {
        height: auto;
        margin-bottom: 1;
    }

    #panels.hidden {
        display: none;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("ctrl+h", "toggle_panels", "Hide/Show"),
        Binding("r", "refresh", "Refresh"),
    ]

    def __init__(self, session: SessionConfig, config: HudConfig | None = None) -> None:
        super().__init__()
        self.switcher = SessionSwitcher(
            session,
            config=config or HudConfig(),
            on_update=self._render_snapshot,
        )
        self._ready = False

    def compose(self) -> ComposeResult:
        yield StatusBar()
        yield ConnectionNotice()
        with Vertical(id="panels"):
            yield ContextMeter()
            yield ToolStream()
            yield AgentList()
            yield TodoList()
        yield Footer()

    def on_mount(self) -> None:
        write_pid_file()
        self._ready = True
        self.switcher.start()
        self.set_interval(CLOCK_INTERVAL, self._render_snapshot)
        self._render_snapshot()

    async def on_unmount(self) -> None:
        self._ready = False
        await self.switcher.close()
        remove_pid_file()

    def _render_snapshot(self) -> None:
        if not self._ready:
            return
        snapshot = self.switcher.snapshot()
        now = datetime.now(timezone.utc)
        state = snapshot.state

        self.query_one(StatusBar).update_snapshot(snapshot, now)
        self.query_one(ConnectionNotice).update_connection(snapshot.connection)
        self.query_one(ContextMeter).update_context(state.context)
        self.query_one(ToolStream).update_tools(state.tools, now)
        self.query_one(AgentList).update_agents(state.agents)
        self.query_one(TodoList).update_todos(state.todos)

    def action_toggle_panels(self) -> None:
        self.query_one("#panels").toggle_class("hidden")

    def action_refresh(self) -> None:
        """Force a transcript read and a refresh-descriptor check."""
        self.switcher.monitor.refresh_transcript()
        self.run_worker(self.switcher.check(), exclusive=True)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="clhud",
        description="Heads-up display for a Claude Code session.",
        epilog="Subcommands: install-hooks, uninstall-hooks",
    )
    parser.add_argument("--session", default="unknown", help="session id")
    parser.add_argument("--fifo", default="", help="path of the session's event FIFO")
    parser.add_argument("--transcript", default=None, help="path of the session transcript (JSONL)")
    parser.add_argument("--version", action="store_true", help="show version")
    return parser.parse_args(argv)


def main() -> None:
    """Entry point for the clhud CLI."""
    if len(sys.argv) > 1:
        cmd = sys.argv[1]

        if cmd == "install-hooks":
            if install_hooks():
                print("clhud hooks installed. Restart Claude Code sessions for effect.")
            else:
                print("Failed to install hooks.", file=sys.stderr)
                sys.exit(1)
            return

        if cmd == "uninstall-hooks":
            if uninstall_hooks():
                print("clhud hooks uninstalled.")
            else:
                print("Failed to uninstall hooks.", file=sys.stderr)
                sys.exit(1)
            return

    args = _parse_args(sys.argv[1:])

    if args.version:
        from . import __version__
        print(f"clhud {__version__}")
        return

    fifo = args.fifo
    session_id = args.session
    transcript = args.transcript
    if not fifo:
        # Fall back to whatever session the hook last announced
        current = read_refresh_descriptor()
        if current is not None:
            session_id, fifo = current.session_id, current.fifo_path
            transcript = transcript or current.transcript_path

    if not fifo:
        print("Usage: clhud --session <id> --fifo <path>", file=sys.stderr)
        if not is_hooks_installed():
            print("Hint: run `clhud install-hooks` first.", file=sys.stderr)
        sys.exit(1)

    config = load_config()
    configure_logging(config.log_level)
    logger.info(f"Starting for session {session_id} on {fifo}")

    app = HudApp(SessionConfig(session_id=session_id, fifo_path=fifo, transcript_path=transcript), config)
    app.run()


if __name__ == "__main__":
    main()
