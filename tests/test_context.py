"""Tests for the heuristic context estimator."""

from datetime import datetime, timedelta, timezone

import pytest

from clhud.context import (
    HISTORY_CAP,
    MAX_TOKENS,
    ContextTracker,
    build_health,
    compute_burn_rate,
    context_status,
    estimate_tokens,
    serialize_payload,
)
from clhud.models import ContextBreakdown, ContextSource, ContextStatus, HudEvent

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _post(tool_input=None, response=None) -> HudEvent:
    return HudEvent(event="PostToolUse", ts=0.0, tool="Read", tool_use_id="t", input=tool_input, response=response)


def test_estimate_tokens():
    """Test token estimate is the ceiling of UTF-8 bytes / 4."""
    assert estimate_tokens("") == 0
    assert estimate_tokens("a" * 100) == 25
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("abc") == 1
    # Multi-byte characters count by encoded size
    assert estimate_tokens("é" * 4) == 2


def test_serialize_payload():
    """Test payloads serialize stably and strings pass through."""
    assert serialize_payload("plain text") == "plain text"
    assert serialize_payload({"b": 1, "a": 2}) == serialize_payload({"a": 2, "b": 1})


def test_context_status_thresholds():
    """Test status bands at 70% and 85%."""
    assert context_status(0) == ContextStatus.HEALTHY
    assert context_status(69.9) == ContextStatus.HEALTHY
    assert context_status(70) == ContextStatus.WARNING
    assert context_status(84.9) == ContextStatus.WARNING
    assert context_status(85) == ContextStatus.CRITICAL
    assert context_status(100) == ContextStatus.CRITICAL


def test_build_health_clamps_percent():
    """Test percent never exceeds 100 and remaining never goes negative."""
    health = build_health(300_000, 200_000, ContextBreakdown(), session_start=T0, last_update=T0)
    assert health.percent == 100.0
    assert health.remaining == 0
    assert health.should_compact is True


def test_build_health_zero_window():
    """Test a zero-sized window reports full rather than dividing by zero."""
    health = build_health(10, 0, ContextBreakdown(), session_start=T0, last_update=T0)
    assert health.percent == 100.0
    assert health.status == ContextStatus.CRITICAL


def test_burn_rate_needs_two_samples():
    """Test burn rate is zero with fewer than two samples."""
    assert compute_burn_rate([]) == 0
    assert compute_burn_rate([(1000, T0)]) == 0


def test_burn_rate_needs_six_seconds():
    """Test burn rate is zero when samples span less than six seconds."""
    samples = [(0, T0), (5000, T0 + timedelta(seconds=5))]
    assert compute_burn_rate(samples) == 0


def test_burn_rate_tokens_per_minute():
    """Test burn rate over one minute."""
    samples = [(0, T0), (1000, T0 + timedelta(seconds=60))]
    assert compute_burn_rate(samples) == 1000


def test_burn_rate_uses_last_ten_samples():
    """Test only the most recent ten samples feed the rate."""
    samples = [(i * i * 10, T0 + timedelta(seconds=i * 10)) for i in range(20)]
    # Samples 10..19: 3610 - 1000 tokens over 90 seconds
    assert compute_burn_rate(samples) == 1740


def test_tracker_initial_health():
    """Test a fresh tracker reports an empty, healthy window."""
    health = ContextTracker(clock=FakeClock()).health()
    assert health.tokens == 0
    assert health.percent == 0.0
    assert health.remaining == MAX_TOKENS
    assert health.status == ContextStatus.HEALTHY
    assert health.source == ContextSource.ESTIMATE
    assert health.history == ()


def test_tracker_breakdown_sums_to_total():
    """Test the breakdown always adds up to the token count."""
    tracker = ContextTracker(clock=FakeClock())
    tracker.process(_post({"file_path": "/a.py"}, {"content": "x" * 800}))
    tracker.process(_post({"command": "ls"}, None))
    tracker.add_message_tokens(123)

    health = tracker.health()
    assert health.breakdown.total == health.tokens
    assert health.breakdown.tool_inputs > 0
    assert health.breakdown.tool_outputs > 0
    assert health.breakdown.messages == 123


def test_tracker_percent_is_monotonic_and_bounded():
    """Test percent only grows and stays within 0..100."""
    tracker = ContextTracker(clock=FakeClock())
    last = 0.0
    for _ in range(50):
        tracker.process(_post({"content": "y" * 40_000}))
        percent = tracker.health().percent
        assert last <= percent <= 100.0
        last = percent
    assert last == 100.0


def test_tracker_reaches_warning():
    """Test sixty 10K-character inputs land in the warning band."""
    tracker = ContextTracker(clock=FakeClock())
    for _ in range(60):
        tracker.process(_post({"content": "x" * 10_000}))

    health = tracker.health()
    assert health.status == ContextStatus.WARNING
    assert 70 <= health.percent < 85
    assert health.should_compact is False


def test_tracker_reset():
    """Test reset returns the tracker to its initial state."""
    clock = FakeClock()
    tracker = ContextTracker(clock=clock)
    tracker.process(_post({"content": "z" * 1000}, {"ok": True}))
    clock.advance(30)

    tracker.reset()
    health = tracker.health()
    assert health.tokens == 0
    assert health.breakdown.total == 0
    assert health.history == ()
    assert health.session_start == clock.now


def test_tracker_history_is_bounded():
    """Test sample history never grows past its cap."""
    tracker = ContextTracker(clock=FakeClock())
    for _ in range(HISTORY_CAP + 20):
        tracker.process(_post({"k": "v"}))
    assert len(tracker.health().history) <= HISTORY_CAP


def test_tracker_burn_rate_with_clock():
    """Test tracker burn rate follows the injected clock."""
    clock = FakeClock()
    tracker = ContextTracker(clock=clock)
    tracker.process(_post("a" * 400))   # 100 tokens
    clock.advance(30)
    tracker.process(_post("a" * 400))   # 200 tokens total

    assert tracker.burn_rate() == pytest.approx(200)


def test_estimate_tokens_lone_surrogate():
    """Test a truncated surrogate pair is counted instead of raising."""
    # "abc" plus one 3-byte surrogate
    assert estimate_tokens("abc\ud800") == 2


def test_tracker_accepts_lone_surrogate():
    """Test payloads with unpaired surrogates still feed the estimate."""
    tracker = ContextTracker(clock=FakeClock())
    tracker.process(_post({"command": "cat x"}, {"stdout": "abc\ud800"}))
    assert tracker.health().breakdown.tool_outputs > 0
