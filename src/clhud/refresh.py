"""Follow the agent across restarts via the refresh descriptor.

The hook rewrites ``refresh.json`` whenever a new session starts talking and
sends SIGUSR1 to the dashboard. Signals get lost (the dashboard may not be
running yet, or the pid file may be stale), so the descriptor is also polled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .config import PID_FILE, REFRESH_FILE, HudConfig
from .context import ContextTracker
from .monitor import HudSnapshot, SessionMonitor
from .pricing import CostTracker
from .transcript import TranscriptReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionConfig:
    session_id: str
    fifo_path: str
    transcript_path: str | None = None


def read_refresh_descriptor(path: Path | None = None) -> SessionConfig | None:
    """Parse refresh.json. None means "no change" for any kind of failure."""
    path = path or REFRESH_FILE
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return None

    if not isinstance(data, dict):
        return None

    session_id = data.get("sessionId")
    fifo_path = data.get("fifoPath")
    if not isinstance(session_id, str) or not session_id:
        return None
    if not isinstance(fifo_path, str) or not fifo_path:
        return None

    transcript_path = data.get("transcriptPath")
    return SessionConfig(
        session_id=session_id,
        fifo_path=fifo_path,
        transcript_path=transcript_path if isinstance(transcript_path, str) and transcript_path else None,
    )


def write_pid_file(path: Path | None = None) -> None:
    path = path or PID_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(str(os.getpid()))
    except OSError as e:
        logger.warning(f"Could not write pid file {path}: {e}")


def remove_pid_file(path: Path | None = None) -> None:
    path = path or PID_FILE
    try:
        if path.read_text().strip() == str(os.getpid()):
            path.unlink()
    except (OSError, ValueError):
        pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionSwitcher:
    """Owns the active SessionMonitor and rebuilds it when the session changes.

    A switch is a hard reset: the old stream and reducer state are thrown away
    and the shared estimators are cleared, so no running tool or agent from
    the previous session can leak into the new one.
    """

    def __init__(
        self,
        initial: SessionConfig,
        *,
        config: HudConfig | None = None,
        refresh_path: Path | None = None,
        on_update: Callable[[], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or HudConfig()
        self.current = initial
        self._refresh_path = refresh_path or REFRESH_FILE
        self._on_update = on_update
        self._clock = clock
        self._lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None
        self._signal_loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task] = set()
        self._started = False

        self.tracker = ContextTracker(clock=clock)
        self.transcript = TranscriptReader(context_limits=self.config.context_limits, clock=clock)
        self.cost = CostTracker()
        self.monitor = self._build(initial)

    def _build(self, session: SessionConfig) -> SessionMonitor:
        return SessionMonitor(
            session.session_id,
            session.fifo_path,
            tracker=self.tracker,
            transcript=self.transcript,
            cost=self.cost,
            transcript_path=session.transcript_path,
            config=self.config,
            on_update=self._notify,
            clock=self._clock,
        )

    def snapshot(self) -> HudSnapshot:
        return self.monitor.snapshot()

    def start(self) -> None:
        """Start the monitor, the descriptor poll, and the SIGUSR1 handler."""
        if self._started:
            return
        self._started = True
        self.monitor.start()
        self._poll_task = asyncio.create_task(self._poll(), name="clhud-refresh-poll")

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGUSR1, self._on_signal)
            self._signal_loop = loop
        except (NotImplementedError, RuntimeError, ValueError, AttributeError) as e:
            logger.debug(f"SIGUSR1 unavailable, relying on polling: {e}")

    def _on_signal(self) -> None:
        task = asyncio.create_task(self.check())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.config.refresh_poll_interval)
            await self.check()

    async def check(self) -> bool:
        """Switch if the descriptor names a different session. Returns True on switch."""
        async with self._lock:
            session = read_refresh_descriptor(self._refresh_path)
            if session is None or session.session_id == self.current.session_id:
                return False
            await self._switch(session)
            return True

    async def switch(self, session: SessionConfig) -> None:
        async with self._lock:
            await self._switch(session)

    async def _switch(self, session: SessionConfig) -> None:
        logger.info(f"Session switch {self.current.session_id} -> {session.session_id}")
        await self.monitor.close()

        self.tracker.reset()
        self.transcript.invalidate()
        self.cost.reset()

        self.current = session
        self.monitor = self._build(session)
        if self._started:
            self.monitor.start()
        self._notify()

    async def close(self) -> None:
        if self._signal_loop is not None:
            self._signal_loop.remove_signal_handler(signal.SIGUSR1)
            self._signal_loop = None

        tasks = list(self._pending)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self.monitor.close()
        self._started = False

    def _notify(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update()
        except Exception:
            logger.exception("Update listener failed")
