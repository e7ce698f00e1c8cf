"""To-do list widget."""

from __future__ import annotations

from collections.abc import Sequence

from rich.markup import escape
from textual.widgets import Static

from ..models import TodoItem

STATUS_ICONS = {
    "completed": "[green]✓[/]",
    "in_progress": "[yellow]▸[/]",
    "pending": "[dim]○[/]",
}


class TodoList(Static):

    def update_todos(self, todos: Sequence[TodoItem]) -> None:
        if not todos:
            self.update("")
            return

        done = sum(1 for t in todos if t.get("status") == "completed")
        lines: list[str] = [f"[bold]Todos[/] [dim]{done}/{len(todos)}[/]"]

        for todo in todos:
            status = str(todo.get("status", "pending"))
            icon = STATUS_ICONS.get(status, STATUS_ICONS["pending"])
            # In-progress items read better in their active form
            text = todo.get("activeForm") if status == "in_progress" else None
            text = escape(str(text or todo.get("content", "")))
            if status == "completed":
                text = f"[dim strike]{text}[/]"
            lines.append(f"{icon} {text}")

        self.update("\n".join(lines))
