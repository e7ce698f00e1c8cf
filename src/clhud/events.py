"""Named-pipe event stream written by the clhud hook."""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import os
import stat
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

from .models import ConnectionStatus, HudEvent

logger = logging.getLogger(__name__)

READ_CHUNK = 65536
RECONNECT_INTERVAL = 0.5

StatusCallback = Callable[[ConnectionStatus], None]


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def decode_event(line: str) -> HudEvent | None:
    """Parse one wire record. Returns None for anything that isn't an event."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None

    if not isinstance(data, dict) or not isinstance(data.get("event"), str):
        return None

    ts = data.get("ts")
    if isinstance(ts, bool) or not isinstance(ts, (int, float)):
        ts = 0.0

    return HudEvent(
        event=data["event"],
        ts=float(ts),
        tool=_opt_str(data.get("tool")),
        tool_use_id=_opt_str(data.get("toolUseId")),
        input=data.get("input"),
        response=data.get("response"),
        session=_opt_str(data.get("session")),
        permission_mode=_opt_str(data.get("permissionMode")),
        cwd=_opt_str(data.get("cwd")),
        transcript_path=_opt_str(data.get("transcriptPath")),
        prompt=_opt_str(data.get("prompt")),
    )


class LineBuffer:
    """Reassembles newline-delimited records from arbitrary read chunks."""

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes) -> list[str]:
        data = self._pending + chunk
        *lines, self._pending = data.split(b"\n")
        return [
            line.decode("utf-8", errors="replace")
            for line in lines
            if line.strip()
        ]

    def clear(self) -> None:
        self._pending = b""

    @property
    def pending(self) -> bytes:
        return self._pending


class EventReader:
    """Reads HudEvents from a FIFO written to by short-lived hook processes.

    Each hook invocation opens the pipe, writes one record and closes it, so
    EOF is routine: the reader reports ``disconnected`` and keeps listening
    for the next writer. Only ``close()`` ends ``events()``.
    """

    def __init__(
        self,
        path: str | Path,
        on_status: StatusCallback | None = None,
        reconnect_interval: float = RECONNECT_INTERVAL,
    ) -> None:
        self.path = Path(path)
        self.status = ConnectionStatus.CONNECTING
        self.last_error: OSError | None = None
        self._on_status = on_status
        self._reconnect_interval = reconnect_interval
        self._fd: int | None = None
        self._closed = False
        self._wakeup: asyncio.Future[None] | None = None
        self._watching: tuple[asyncio.AbstractEventLoop, int] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        logger.info(f"{self.path.name}: {self.status.value} -> {status.value}")
        self.status = status
        if self._on_status is not None:
            self._on_status(status)

    async def events(self) -> AsyncIterator[HudEvent]:
        buffer = LineBuffer()
        try:
            while not self._closed:
                if self._fd is None and not self._reopen():
                    await self._sleep(self._reconnect_interval)
                    continue

                try:
                    async for line in self._read_lines(buffer):
                        event = decode_event(line)
                        if event is None:
                            logger.debug(f"Skipping malformed record: {line[:120]!r}")
                            continue
                        if self._closed:
                            return
                        yield event
                except OSError as e:
                    self._fail(e)
                    self._release()
                    buffer.clear()
                    await self._sleep(self._reconnect_interval)
        finally:
            self._release()

    def _reopen(self) -> bool:
        """Swap in a fresh read end of the pipe.

        The new descriptor is opened before the old one is closed so that a
        reader always exists; writers opening with O_NONBLOCK would otherwise
        get ENXIO and drop their record.
        """
        try:
            if not stat.S_ISFIFO(self.path.stat().st_mode):
                raise OSError(errno.EINVAL, "not a named pipe", str(self.path))
            fd = os.open(self.path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as e:
            self._fail(e)
            self._release()
            return False

        self._release()
        self._fd = fd
        return True

    async def _read_lines(self, buffer: LineBuffer) -> AsyncIterator[str]:
        received = False
        while not self._closed and self._fd is not None:
            await self._wait_readable(self._fd)

            while not self._closed and self._fd is not None:
                try:
                    chunk = os.read(self._fd, READ_CHUNK)
                except BlockingIOError:
                    break

                if not chunk:
                    # Every writer has closed its end.
                    if buffer.pending:
                        logger.debug(f"Dropping {len(buffer.pending)} bytes of incomplete record")
                        buffer.clear()
                    if received or self.status == ConnectionStatus.CONNECTED:
                        self._set_status(ConnectionStatus.DISCONNECTED)
                    else:
                        # Hangup without data; back off instead of spinning.
                        await self._sleep(self._reconnect_interval)
                    if not self._closed:
                        self._reopen()
                    return

                received = True
                self._set_status(ConnectionStatus.CONNECTED)
                for line in buffer.feed(chunk):
                    yield line

    async def _wait_readable(self, fd: int) -> None:
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._wakeup = waiter

        def _ready() -> None:
            if not waiter.done():
                waiter.set_result(None)

        loop.add_reader(fd, _ready)
        self._watching = (loop, fd)
        try:
            await waiter
        finally:
            self._unwatch()
            self._wakeup = None

    def _unwatch(self) -> None:
        watching, self._watching = self._watching, None
        if watching is not None:
            loop, fd = watching
            loop.remove_reader(fd)

    async def _sleep(self, seconds: float) -> None:
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._wakeup = waiter
        handle = loop.call_later(seconds, lambda: waiter.done() or waiter.set_result(None))
        try:
            await waiter
        finally:
            handle.cancel()
            self._wakeup = None

    def _fail(self, error: OSError) -> None:
        self.last_error = error
        if error.errno == errno.ENOENT:
            self._set_status(ConnectionStatus.CONNECTING)
            return
        logger.warning(f"Event stream {self.path} failed: {error}")
        self._set_status(ConnectionStatus.ERROR)

    def _release(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            os.close(fd)
        except OSError:
            pass

    def close(self) -> None:
        """Stop reading and release the pipe. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._unwatch()
        if self._wakeup is not None and not self._wakeup.done():
            self._wakeup.set_result(None)
        self._release()
        self._set_status(ConnectionStatus.DISCONNECTED)
