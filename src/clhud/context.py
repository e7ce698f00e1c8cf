"""Heuristic context-window accounting from live hook payloads.

The estimator is deliberately cheap: it counts roughly four bytes of
serialized payload per token. It is not a tokenizer. The transcript reader
(see ``clhud.transcript``) replaces its output with real usage numbers
whenever the transcript is available.
"""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from .models import ContextBreakdown, ContextHealth, ContextSource, ContextStatus, HudEvent

MAX_TOKENS = 200_000
BYTES_PER_TOKEN = 4

WARNING_THRESHOLD = 70.0
COMPACTION_THRESHOLD = 85.0

HISTORY_CAP = 100
HISTORY_TRIM = 50

BURN_RATE_WINDOW = 10
BURN_RATE_MIN_SECONDS = 6.0

Clock = Callable[[], datetime]
TokenSample = tuple[int, datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_tokens(text: str) -> int:
    """Approximate token count for a string (ceil of UTF-8 bytes / 4)."""
    if not text:
        return 0
    return math.ceil(len(text.encode("utf-8", errors="surrogatepass")) / BYTES_PER_TOKEN)


def serialize_payload(payload: Any) -> str:
    """Stable JSON rendering of a hook payload for size estimation."""
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(payload)


def context_status(percent: float) -> ContextStatus:
    if percent >= COMPACTION_THRESHOLD:
        return ContextStatus.CRITICAL
    if percent >= WARNING_THRESHOLD:
        return ContextStatus.WARNING
    return ContextStatus.HEALTHY


def compute_burn_rate(samples: Sequence[TokenSample]) -> int:
    """Tokens per minute over the most recent samples.

    Returns 0 with fewer than two samples or when they span less than six
    seconds, where the division would mostly amplify noise.
    """
    recent = samples[-BURN_RATE_WINDOW:]
    if len(recent) < 2:
        return 0

    first_tokens, first_at = recent[0]
    last_tokens, last_at = recent[-1]
    seconds = (last_at - first_at).total_seconds()
    if seconds < BURN_RATE_MIN_SECONDS:
        return 0

    return round((last_tokens - first_tokens) / (seconds / 60))


def build_health(
    tokens: int,
    max_tokens: int,
    breakdown: ContextBreakdown,
    *,
    burn_rate: int = 0,
    session_start: datetime,
    last_update: datetime,
    history: tuple[int, ...] = (),
    source: ContextSource = ContextSource.ESTIMATE,
) -> ContextHealth:
    """Derive percent, remaining and status from a raw token count."""
    percent = (tokens / max_tokens) * 100 if max_tokens > 0 else 100.0
    percent = min(max(percent, 0.0), 100.0)
    status = context_status(percent)

    return ContextHealth(
        tokens=tokens,
        percent=percent,
        remaining=max(max_tokens - tokens, 0),
        max_tokens=max_tokens,
        burn_rate=burn_rate,
        status=status,
        should_compact=status == ContextStatus.CRITICAL,
        breakdown=breakdown,
        session_start=session_start,
        last_update=last_update,
        history=history,
        source=source,
    )


class ContextTracker:
    """Running token estimate for the active session."""

    def __init__(self, max_tokens: int = MAX_TOKENS, clock: Clock = _utcnow) -> None:
        self.max_tokens = max_tokens
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        """Zero all counters and restart the session clock."""
        self._total = 0
        self._tool_inputs = 0
        self._tool_outputs = 0
        self._messages = 0
        self._other = 0
        self._history: list[TokenSample] = []
        self.session_start = self._clock()
        self.last_update = self.session_start

    @property
    def total(self) -> int:
        return self._total

    def process(self, event: HudEvent) -> None:
        self.last_update = self._clock()

        if event.input:
            tokens = estimate_tokens(serialize_payload(event.input))
            self._tool_inputs += tokens
            self._total += tokens

        if event.response:
            tokens = estimate_tokens(serialize_payload(event.response))
            self._tool_outputs += tokens
            self._total += tokens

        self._history.append((self._total, self.last_update))
        if len(self._history) > HISTORY_CAP:
            self._history = self._history[-HISTORY_TRIM:]

    def add_message_tokens(self, tokens: int) -> None:
        self._messages += tokens
        self._total += tokens
        self.last_update = self._clock()

    def burn_rate(self) -> int:
        return compute_burn_rate(self._history)

    def health(self) -> ContextHealth:
        breakdown = ContextBreakdown(
            tool_outputs=self._tool_outputs,
            tool_inputs=self._tool_inputs,
            messages=self._messages,
            other=self._other,
        )
        return build_health(
            self._total,
            self.max_tokens,
            breakdown,
            burn_rate=self.burn_rate(),
            session_start=self.session_start,
            last_update=self.last_update,
            history=tuple(tokens for tokens, _ in self._history),
        )
