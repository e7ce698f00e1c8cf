"""Pure reducer folding hook events into a HudState."""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime
from typing import Any

from .models import (
    AgentEntry,
    AgentStatus,
    EventKind,
    HudEvent,
    HudState,
    SessionInfo,
    ToolEntry,
    ToolStatus,
)

MAX_TOOL_HISTORY = 30
MAX_AGENTS = 11


def tool_target(tool_input: Any) -> str:
    """Short label for what a tool is acting on."""
    if not isinstance(tool_input, dict):
        return ""

    file_path = tool_input.get("file_path")
    if isinstance(file_path, str) and file_path:
        return file_path

    command = tool_input.get("command")
    if isinstance(command, str) and command:
        return command[:40]

    pattern = tool_input.get("pattern")
    if isinstance(pattern, str) and pattern:
        return pattern[:30]

    return ""


def _append_bounded(items: tuple, item: Any, limit: int) -> tuple:
    return (*items[-(limit - 1):], item) if limit > 1 else (item,)


def _merge_session(info: SessionInfo, event: HudEvent) -> SessionInfo:
    if not (event.permission_mode or event.cwd or event.transcript_path):
        return info
    return replace(
        info,
        permission_mode=event.permission_mode or info.permission_mode,
        cwd=event.cwd or info.cwd,
        transcript_path=event.transcript_path or info.transcript_path,
    )


def _on_pre_tool_use(state: HudState, event: HudEvent, now: datetime) -> HudState:
    if not (event.tool and event.tool_use_id):
        return state

    entry = ToolEntry(
        id=event.tool_use_id,
        tool=event.tool,
        target=tool_target(event.input),
        status=ToolStatus.RUNNING,
        started_at=now,
    )
    tools = _append_bounded(state.tools, entry, MAX_TOOL_HISTORY)
    # A tool that never reported completion is dropped once it leaves the history.
    kept = {t.id for t in tools}
    running = {k: v for k, v in state.running.items() if k in kept}
    running[entry.id] = entry
    return replace(
        state,
        running=running,
        tools=tools,
        session=replace(state.session, is_idle=False),
    )


def _on_post_tool_use(state: HudState, event: HudEvent, now: datetime) -> HudState:
    if not event.tool:
        return state

    tool_use_id = event.tool_use_id or f"{event.ts}-{event.tool}"
    existing = state.running.get(tool_use_id)
    # No matching PreToolUse (e.g. the dashboard reconnected mid-call).
    started_at = existing.started_at if existing else event.timestamp

    response = event.response if isinstance(event.response, dict) else {}
    failed = "error" in response
    duration_ms = response.get("duration_ms")
    if (
        not isinstance(duration_ms, (int, float))
        or isinstance(duration_ms, bool)
        or not math.isfinite(duration_ms)
        or not duration_ms
    ):
        duration_ms = max(int((now - started_at).total_seconds() * 1000), 0)

    entry = ToolEntry(
        id=tool_use_id,
        tool=event.tool,
        target=existing.target if existing else "",
        status=ToolStatus.ERROR if failed else ToolStatus.COMPLETE,
        started_at=started_at,
        ended_at=now,
        duration_ms=int(duration_ms),
    )

    index = next((i for i, t in enumerate(state.tools) if t.id == tool_use_id), None)
    if index is None:
        tools = _append_bounded(state.tools, entry, MAX_TOOL_HISTORY)
    else:
        tools = (*state.tools[:index], entry, *state.tools[index + 1:])

    running = {k: v for k, v in state.running.items() if k != tool_use_id}
    return replace(state, running=running, tools=tools)


def _on_task_spawn(state: HudState, event: HudEvent, now: datetime) -> HudState:
    task_input = event.input if isinstance(event.input, dict) else {}
    subagent_type = task_input.get("subagent_type") or ""
    agent = AgentEntry(
        id=event.tool_use_id or f"{event.ts}-{subagent_type or 'unknown'}",
        type=str(subagent_type or "Task"),
        description=str(task_input.get("description") or ""),
        status=AgentStatus.RUNNING,
        started_at=now,
    )
    return replace(state, agents=_append_bounded(state.agents, agent, MAX_AGENTS))


def _on_todo_write(state: HudState, event: HudEvent) -> HudState:
    todos = event.input.get("todos") if isinstance(event.input, dict) else None
    if not isinstance(todos, list):
        return state
    return replace(state, todos=tuple(t for t in todos if isinstance(t, dict)))


def _on_subagent_stop(state: HudState, now: datetime) -> HudState:
    # Stop events carry no agent id; assume the oldest running agent finished.
    for i, agent in enumerate(state.agents):
        if agent.status == AgentStatus.RUNNING:
            done = replace(agent, status=AgentStatus.COMPLETE, ended_at=now)
            return replace(state, agents=(*state.agents[:i], done, *state.agents[i + 1:]))
    return state


def reduce(state: HudState, event: HudEvent, now: datetime) -> HudState:
    """Apply one event. Never raises; unknown kinds and tools are no-ops."""
    state = replace(state, session=_merge_session(state.session, event))

    match event.kind:
        case EventKind.PRE_TOOL_USE:
            state = _on_pre_tool_use(state, event, now)
            if event.tool == "Task" and event.input:
                state = _on_task_spawn(state, event, now)
        case EventKind.POST_TOOL_USE:
            state = _on_post_tool_use(state, event, now)
        case EventKind.USER_PROMPT_SUBMIT:
            state = replace(state, session=replace(state.session, is_idle=False))
        case EventKind.STOP:
            state = replace(state, session=replace(state.session, is_idle=True))
        case EventKind.SUBAGENT_STOP:
            state = _on_subagent_stop(state, now)
        case _:
            pass

    if event.tool == "TodoWrite" and event.input:
        state = _on_todo_write(state, event)

    return state
