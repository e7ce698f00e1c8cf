"""One session's pipeline: event stream -> reducer, plus the transcript poll."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path

from .config import HudConfig
from .context import ContextTracker
from .events import EventReader
from .models import ConnectionStatus, ContextHealth, EventKind, HudEvent, HudState, SessionInfo
from .pricing import CostEstimate, CostTracker
from .state import reduce
from .transcript import TranscriptReader

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[], None]


@dataclass(frozen=True)
class HudSnapshot:
    """Read-only view handed to the renderer."""
    session_id: str
    connection: ConnectionStatus
    state: HudState
    cost: CostEstimate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionMonitor:
    """Applies events for exactly one session.

    All mutation happens on the event loop thread, between awaits, so the
    read loop and the transcript poll never interleave partial updates. The
    context tracker, transcript reader and cost tracker are owned by the
    caller and only ever produce whole values that replace ``state.context``.
    """

    def __init__(
        self,
        session_id: str,
        fifo_path: str | Path,
        *,
        tracker: ContextTracker,
        transcript: TranscriptReader,
        cost: CostTracker,
        transcript_path: str | None = None,
        config: HudConfig | None = None,
        on_update: UpdateCallback | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_id = session_id
        self.config = config or HudConfig()
        self._tracker = tracker
        self._transcript = transcript
        self._cost = cost
        self._on_update = on_update
        self._clock = clock
        self._transcript_health: ContextHealth | None = None
        self._tasks: list[asyncio.Task] = []
        self._closed = False

        self.state = HudState(
            session=SessionInfo(transcript_path=transcript_path or ""),
            context=tracker.health(),
        )
        self.reader = EventReader(
            fifo_path,
            on_status=lambda _status: self._notify(),
            reconnect_interval=self.config.reconnect_interval,
        )

    def apply(self, event: HudEvent) -> None:
        previous_path = self.state.session.transcript_path
        self.state = reduce(self.state, event, self._clock())
        self._cost.process(event)

        if event.kind == EventKind.POST_TOOL_USE and event.tool:
            self._tracker.process(event)
            self.state = replace(self.state, context=self._transcript_health or self._tracker.health())

        if self.state.session.transcript_path != previous_path:
            self._transcript_health = None
            self.refresh_transcript()

        self._notify()

    def refresh_transcript(self) -> bool:
        """Replace the live estimate with transcript usage, if there is any."""
        path = self.state.session.transcript_path
        health = self._transcript.context_health(path)
        if health is None:
            return False

        tokens = self._transcript.read(path)
        if tokens is not None:
            self._cost.set_model(tokens.model)

        self._transcript_health = health
        self.state = replace(self.state, context=health)
        self._notify()
        return True

    def snapshot(self) -> HudSnapshot:
        return HudSnapshot(
            session_id=self.session_id,
            connection=self.reader.status,
            state=self.state,
            cost=self._cost.cost(),
        )

    def start(self) -> None:
        if self._tasks or self._closed:
            return
        self._tasks = [
            asyncio.create_task(self._consume(), name=f"clhud-events-{self.session_id}"),
            asyncio.create_task(self._poll_transcript(), name=f"clhud-transcript-{self.session_id}"),
        ]

    async def _consume(self) -> None:
        async for event in self.reader.events():
            try:
                self.apply(event)
            except Exception:
                logger.exception(f"Dropping event {event.event} after a processing error")

    async def _poll_transcript(self) -> None:
        while not self._closed:
            try:
                self.refresh_transcript()
            except Exception:
                logger.exception("Transcript refresh failed")
            await asyncio.sleep(self.config.transcript_poll_interval)

    async def close(self) -> None:
        """Stop the read loop and the poll timer. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self.reader.close()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _notify(self) -> None:
        if self._closed or self._on_update is None:
            return
        try:
            self._on_update()
        except Exception:
            logger.exception("Update listener failed")
