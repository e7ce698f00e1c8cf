"""clhud TUI widgets."""

from .agent_list import AgentList
from .context_meter import ContextMeter
from .todo_list import TodoList
from .tool_stream import ToolStream

__all__ = ["AgentList", "ContextMeter", "TodoList", "ToolStream"]
