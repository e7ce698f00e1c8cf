"""Tests for the session state reducer."""

from datetime import datetime, timedelta, timezone

from clhud.events import decode_event
from clhud.models import AgentStatus, HudEvent, HudState, ToolStatus
from clhud.state import MAX_AGENTS, MAX_TOOL_HISTORY, reduce, tool_target

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _event(kind: str, **kwargs) -> HudEvent:
    kwargs.setdefault("ts", T0.timestamp())
    return HudEvent(event=kind, **kwargs)


def _fold(events, state: HudState | None = None, now: datetime = T0) -> HudState:
    state = state or HudState()
    for event in events:
        state = reduce(state, event, now)
    return state


def test_tool_target():
    """Test target extraction prefers file path, then command, then pattern."""
    assert tool_target({"file_path": "/src/app.py", "command": "ls"}) == "/src/app.py"
    assert tool_target({"command": "x" * 60}) == "x" * 40
    assert tool_target({"pattern": "p" * 50}) == "p" * 30
    assert tool_target({"other": 1}) == ""
    assert tool_target(None) == ""
    assert tool_target("string input") == ""


def test_pre_then_post_tool_use():
    """Test a tool moves from running to complete with measured duration."""
    state = reduce(HudState(), _event("PreToolUse", tool="Read", tool_use_id="t1", input={"file_path": "/a.py"}), T0)

    assert "t1" in state.running
    assert state.tools[-1].status == ToolStatus.RUNNING
    assert state.tools[-1].target == "/a.py"
    assert state.session.is_idle is False

    later = T0 + timedelta(seconds=3)
    state = reduce(state, _event("PostToolUse", tool="Read", tool_use_id="t1", response={"content": "..."}), later)

    assert state.running == {}
    assert len(state.tools) == 1
    entry = state.tools[0]
    assert entry.status == ToolStatus.COMPLETE
    assert entry.target == "/a.py"
    assert entry.started_at == T0
    assert entry.ended_at == later
    assert entry.duration_ms == 3000


def test_post_tool_use_reported_duration():
    """Test a duration_ms in the response wins over the measured delta."""
    state = _fold([
        _event("PreToolUse", tool="Bash", tool_use_id="t1", input={"command": "make"}),
        _event("PostToolUse", tool="Bash", tool_use_id="t1", response={"duration_ms": 1234}),
    ])
    assert state.tools[0].duration_ms == 1234


def test_post_tool_use_error():
    """Test an error key in the response marks the tool failed."""
    state = _fold([
        _event("PreToolUse", tool="Bash", tool_use_id="t1", input={"command": "false"}),
        _event("PostToolUse", tool="Bash", tool_use_id="t1", response={"error": "exit 1"}),
    ])
    assert state.tools[0].status == ToolStatus.ERROR
    assert state.running == {}


def test_post_tool_use_without_pre():
    """Test a PostToolUse with no matching start still lands in history."""
    started = T0 - timedelta(seconds=2)
    event = _event("PostToolUse", tool="Grep", tool_use_id="orphan", ts=started.timestamp(), response={})
    state = reduce(HudState(), event, T0)

    assert len(state.tools) == 1
    entry = state.tools[0]
    assert entry.id == "orphan"
    assert entry.status == ToolStatus.COMPLETE
    assert entry.target == ""
    assert 1990 <= entry.duration_ms <= 2010


def test_post_tool_use_synthesizes_id():
    """Test a missing tool_use_id falls back to timestamp and tool name."""
    state = reduce(HudState(), _event("PostToolUse", tool="Read", ts=100.0), T0)
    assert state.tools[0].id == "100.0-Read"


def test_pre_tool_use_requires_tool_and_id():
    """Test PreToolUse without a tool or id leaves tools untouched."""
    state = _fold([
        _event("PreToolUse", tool="Read"),
        _event("PreToolUse", tool_use_id="t1"),
    ])
    assert state.tools == ()
    assert state.running == {}


def test_tool_history_is_bounded():
    """Test only the newest tool entries are kept."""
    events = [
        _event("PreToolUse", tool="Read", tool_use_id=f"t{i}", input={"file_path": f"/f{i}"})
        for i in range(MAX_TOOL_HISTORY + 5)
    ]
    state = _fold(events)

    assert len(state.tools) == MAX_TOOL_HISTORY
    assert state.tools[0].id == "t5"
    assert state.tools[-1].id == f"t{MAX_TOOL_HISTORY + 4}"


def test_task_spawns_agent():
    """Test a Task PreToolUse adds a running agent."""
    state = reduce(
        HudState(),
        _event(
            "PreToolUse",
            tool="Task",
            tool_use_id="a1",
            input={"subagent_type": "Explore", "description": "Find the config loader"},
        ),
        T0,
    )

    assert len(state.agents) == 1
    agent = state.agents[0]
    assert agent.id == "a1"
    assert agent.type == "Explore"
    assert agent.description == "Find the config loader"
    assert agent.status == AgentStatus.RUNNING
    assert state.running_agents == 1


def test_task_without_subagent_type():
    """Test an agent without a subagent type defaults to Task."""
    state = reduce(HudState(), _event("PreToolUse", tool="Task", ts=5.0, input={"description": "x"}), T0)
    assert state.agents[0].type == "Task"
    assert state.agents[0].id == "5.0-unknown"


def test_subagent_stop_completes_oldest_running():
    """Test SubagentStop finishes agents in the order they started."""
    later = T0 + timedelta(seconds=10)
    state = _fold([
        _event("PreToolUse", tool="Task", tool_use_id="a1", input={"subagent_type": "one"}),
        _event("PreToolUse", tool="Task", tool_use_id="a2", input={"subagent_type": "two"}),
    ])
    state = reduce(state, _event("SubagentStop"), later)

    assert state.agents[0].status == AgentStatus.COMPLETE
    assert state.agents[0].ended_at == later
    assert state.agents[1].status == AgentStatus.RUNNING

    state = reduce(state, _event("SubagentStop"), later)
    assert state.running_agents == 0


def test_subagent_stop_without_running_agent():
    """Test SubagentStop with nothing running changes nothing."""
    state = HudState()
    assert reduce(state, _event("SubagentStop"), T0) == state


def test_agents_are_bounded():
    """Test the agent list keeps only the newest entries."""
    events = [
        _event("PreToolUse", tool="Task", tool_use_id=f"a{i}", input={"subagent_type": "x"})
        for i in range(MAX_AGENTS + 1)
    ]
    state = _fold(events)

    assert len(state.agents) == MAX_AGENTS
    assert state.agents[0].id == "a1"


def test_todo_write_replaces_list():
    """Test each TodoWrite replaces the whole list."""
    first = [{"content": "a", "status": "pending"}, {"content": "b", "status": "pending"}]
    second = [{"content": "a", "status": "completed"}, "junk"]

    state = _fold([
        _event("PreToolUse", tool="TodoWrite", tool_use_id="w1", input={"todos": first}),
        _event("PreToolUse", tool="TodoWrite", tool_use_id="w2", input={"todos": second}),
    ])

    assert state.todos == ({"content": "a", "status": "completed"},)
    assert state.todos_completed == 1


def test_todo_write_without_list_is_ignored():
    """Test a TodoWrite whose input lacks a list keeps the current todos."""
    todos = [{"content": "a", "status": "pending"}]
    state = _fold([
        _event("PreToolUse", tool="TodoWrite", tool_use_id="w1", input={"todos": todos}),
        _event("PostToolUse", tool="TodoWrite", tool_use_id="w1", input={"todos": "nope"}),
    ])
    assert state.todos == tuple(todos)


def test_session_fields_merge_by_presence():
    """Test session fields only change when the event carries them."""
    state = _fold([
        _event("UserPromptSubmit", cwd="/work", transcript_path="/t.jsonl"),
        _event("PreToolUse", tool="Read", tool_use_id="t1", permission_mode="plan"),
    ])

    assert state.session.cwd == "/work"
    assert state.session.transcript_path == "/t.jsonl"
    assert state.session.permission_mode == "plan"


def test_idle_flag():
    """Test prompts and tools mark the session busy; Stop marks it idle."""
    state = HudState()
    assert state.session.is_idle is True

    state = reduce(state, _event("UserPromptSubmit"), T0)
    assert state.session.is_idle is False

    state = reduce(state, _event("Stop"), T0)
    assert state.session.is_idle is True

    state = reduce(state, _event("PreToolUse", tool="Read", tool_use_id="t1"), T0)
    assert state.session.is_idle is False


def test_unknown_event_is_noop():
    """Test unknown event kinds leave the state unchanged."""
    state = _fold([_event("PreToolUse", tool="Read", tool_use_id="t1")])
    assert reduce(state, _event("Notification", tool="Read"), T0) == state


def test_reduce_does_not_mutate_input():
    """Test the reducer returns new state and leaves the old one alone."""
    before = HudState()
    after = reduce(before, _event("PreToolUse", tool="Read", tool_use_id="t1"), T0)

    assert before.running == {}
    assert before.tools == ()
    assert after is not before


def test_post_tool_use_non_finite_duration():
    """Test NaN or Infinity durations fall back to the measured delta."""
    later = T0 + timedelta(seconds=3)
    for raw in ("NaN", "Infinity", "-Infinity"):
        post = decode_event(
            '{"event": "PostToolUse", "tool": "Bash", "toolUseId": "t1", "ts": 0, '
            f'"response": {{"duration_ms": {raw}}}}}'
        )
        state = reduce(_fold([_event("PreToolUse", tool="Bash", tool_use_id="t1")]), post, later)

        assert state.tools[0].status == ToolStatus.COMPLETE
        assert state.tools[0].duration_ms == 3000


def test_unfinished_tools_leave_running_map():
    """Test tools that never complete are dropped once evicted from history."""
    events = [
        _event("PreToolUse", tool="Bash", tool_use_id=f"t{i}", input={"command": "sleep"})
        for i in range(MAX_TOOL_HISTORY + 5)
    ]
    state = _fold(events)

    assert len(state.running) == MAX_TOOL_HISTORY
    assert set(state.running) == {t.id for t in state.tools}
    assert "t0" not in state.running
