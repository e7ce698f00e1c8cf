"""Data models for clhud events, entries and the aggregated session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    STOP = "Stop"
    SUBAGENT_STOP = "SubagentStop"


class ToolStatus(Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class AgentStatus(Enum):
    RUNNING = "running"
    COMPLETE = "complete"


class ContextStatus(Enum):
    HEALTHY = "healthy"     # < 70% of the window
    WARNING = "warning"     # >= 70%
    CRITICAL = "critical"   # >= 85%, compaction advised


class ContextSource(Enum):
    ESTIMATE = "estimate"       # Live heuristic from hook payloads
    TRANSCRIPT = "transcript"   # Usage block of the last assistant record


class ConnectionStatus(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class HudEvent:
    """One lifecycle record received from the hook stream.

    ``event`` is kept as the raw string so that unknown kinds survive decoding
    and fall through to the reducer's no-op arm.
    """
    event: str
    ts: float                          # Epoch seconds, as sent on the wire
    tool: str | None = None
    tool_use_id: str | None = None
    input: Any = None
    response: Any = None
    session: str | None = None
    permission_mode: str | None = None
    cwd: str | None = None
    transcript_path: str | None = None
    prompt: str | None = None

    @property
    def kind(self) -> EventKind | None:
        try:
            return EventKind(self.event)
        except ValueError:
            return None

    @property
    def timestamp(self) -> datetime:
        try:
            return datetime.fromtimestamp(self.ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class ToolEntry:
    """A single tool invocation."""
    id: str
    tool: str
    target: str            # e.g. "/src/app.py" or "npm test"
    status: ToolStatus
    started_at: datetime
    ended_at: datetime | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class AgentEntry:
    """A sub-agent spawned through the Task tool."""
    id: str
    type: str
    description: str
    status: AgentStatus
    started_at: datetime
    ended_at: datetime | None = None


# The upstream TodoWrite tool always sends the full list; items stay opaque.
TodoItem = dict[str, Any]


@dataclass(frozen=True)
class SessionInfo:
    permission_mode: str = "default"
    cwd: str = ""
    transcript_path: str = ""
    is_idle: bool = True


@dataclass(frozen=True)
class ContextBreakdown:
    tool_outputs: int = 0
    tool_inputs: int = 0
    messages: int = 0
    other: int = 0

    @property
    def total(self) -> int:
        return self.tool_outputs + self.tool_inputs + self.messages + self.other


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ContextHealth:
    """Point-in-time view of context window consumption."""
    tokens: int = 0
    percent: float = 0.0
    remaining: int = 200_000
    max_tokens: int = 200_000
    burn_rate: int = 0                 # tokens / minute
    status: ContextStatus = ContextStatus.HEALTHY
    should_compact: bool = False
    breakdown: ContextBreakdown = field(default_factory=ContextBreakdown)
    session_start: datetime = field(default_factory=_now)
    last_update: datetime = field(default_factory=_now)
    history: tuple[int, ...] = ()      # Token totals, oldest first
    source: ContextSource = ContextSource.ESTIMATE


@dataclass(frozen=True)
class HudState:
    """Everything the dashboard shows for one session.

    Collections are tuples; the reducer returns a new HudState per event.
    """
    running: dict[str, ToolEntry] = field(default_factory=dict)
    tools: tuple[ToolEntry, ...] = ()
    agents: tuple[AgentEntry, ...] = ()
    todos: tuple[TodoItem, ...] = ()
    session: SessionInfo = field(default_factory=SessionInfo)
    context: ContextHealth = field(default_factory=ContextHealth)

    @property
    def running_agents(self) -> int:
        return sum(1 for a in self.agents if a.status == AgentStatus.RUNNING)

    @property
    def todos_completed(self) -> int:
        return sum(1 for t in self.todos if t.get("status") == "completed")
