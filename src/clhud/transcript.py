"""Authoritative context usage from the session transcript (JSONL)."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .context import Clock, TokenSample, build_health, compute_burn_rate
from .models import ContextBreakdown, ContextHealth, ContextSource

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LIMIT = 200_000

# Matched as substrings of the transcript's model id; the longest key wins.
MODEL_CONTEXT_LIMITS: dict[str, int] = {
    "claude-opus-4": 200_000,
    "claude-opus-4-5": 200_000,
    "claude-sonnet-4": 200_000,
    "claude-sonnet-4-5": 200_000,
    "claude-haiku-4-5": 200_000,
    "claude-3-7-sonnet": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-3-5-haiku": 200_000,
}

HISTORY_CAP = 50


@dataclass(frozen=True)
class SessionTokens:
    """Usage block of the last assistant record in a transcript."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    message_count: int = 0
    model: str | None = None

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_tokens
            + self.cache_read_tokens
        )


def get_context_limit(model: str | None, limits: Mapping[str, int] = MODEL_CONTEXT_LIMITS) -> int:
    """Window size for a model id, by the most specific matching key."""
    if not model:
        return DEFAULT_CONTEXT_LIMIT
    matches = [key for key in limits if key in model]
    if not matches:
        return DEFAULT_CONTEXT_LIMIT
    return limits[max(matches, key=len)]


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_NOT_CACHED = object()


class TranscriptReader:
    """Reads and caches usage from one transcript at a time.

    The transcript can grow to tens of thousands of lines and is polled every
    few seconds, so a parse only happens when the path or its mtime changed.
    """

    def __init__(
        self,
        context_limits: Mapping[str, int] | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._limits = dict(MODEL_CONTEXT_LIMITS)
        if context_limits:
            self._limits.update(context_limits)
        self._clock = clock
        self._session_start = clock()
        self._history: list[TokenSample] = []
        self._cache: SessionTokens | None | object = _NOT_CACHED
        self._cache_key: tuple[str, int] | None = None

    def read(self, transcript_path: str | Path | None) -> SessionTokens | None:
        """Return usage as of the last assistant record, or None if unavailable."""
        if not transcript_path:
            return None

        path = Path(transcript_path)
        try:
            mtime = path.stat().st_mtime_ns
        except OSError:
            return None

        key = (str(path), mtime)
        if self._cache is not _NOT_CACHED and self._cache_key == key:
            return self._cache  # type: ignore[return-value]

        try:
            tokens = self._scan(path)
        except OSError as e:
            logger.warning(f"Failed to read transcript {path}: {e}")
            return None

        self._cache = tokens
        self._cache_key = key
        if tokens is not None:
            self._record(tokens.total_tokens)
        return tokens

    def _scan(self, path: Path) -> SessionTokens | None:
        """Single pass over the transcript; later records overwrite earlier ones.

        Usage blocks are per-message snapshots of the whole prompt, not deltas,
        so only the last qualifying record matters.
        """
        usage: Mapping[str, object] | None = None
        model: str | None = None
        message_count = 0
        skipped = 0

        with path.open(encoding="utf-8", errors="replace") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    skipped += 1
                    continue
                if not isinstance(entry, dict):
                    continue

                message = entry.get("message")
                if not isinstance(message, dict):
                    continue
                if entry.get("type") != "assistant" and message.get("role") != "assistant":
                    continue
                if not isinstance(message.get("usage"), dict):
                    continue

                usage = message["usage"]
                message_count += 1
                if isinstance(message.get("model"), str):
                    model = message["model"]

        if skipped:
            logger.debug(f"Skipped {skipped} unparseable line(s) in {path}")

        if usage is None:
            return None

        return SessionTokens(
            input_tokens=_as_int(usage.get("input_tokens")),
            output_tokens=_as_int(usage.get("output_tokens")),
            cache_creation_tokens=_as_int(usage.get("cache_creation_input_tokens")),
            cache_read_tokens=_as_int(usage.get("cache_read_input_tokens")),
            message_count=message_count,
            model=model,
        )

    def _record(self, total: int) -> None:
        if self._history and self._history[-1][0] == total:
            return
        self._history.append((total, self._clock()))
        if len(self._history) > HISTORY_CAP:
            self._history = self._history[-HISTORY_CAP:]

    def context_health(self, transcript_path: str | Path | None) -> ContextHealth | None:
        tokens = self.read(transcript_path)
        if tokens is None:
            return None

        breakdown = ContextBreakdown(
            tool_outputs=tokens.output_tokens,
            tool_inputs=tokens.input_tokens,
            messages=tokens.cache_creation_tokens + tokens.cache_read_tokens,
            other=0,
        )
        last_update = self._history[-1][1] if self._history else self._clock()
        return build_health(
            tokens.total_tokens,
            get_context_limit(tokens.model, self._limits),
            breakdown,
            burn_rate=compute_burn_rate(self._history),
            session_start=self._session_start,
            last_update=last_update,
            history=tuple(total for total, _ in self._history) or (tokens.total_tokens,),
            source=ContextSource.TRANSCRIPT,
        )

    def invalidate(self) -> None:
        """Drop the cached snapshot and history (session switch)."""
        self._cache = _NOT_CACHED
        self._cache_key = None
        self._history = []
        self._session_start = self._clock()
