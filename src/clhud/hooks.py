"""Claude Code hook that feeds the dashboard, and its installer.

``clhud-hook`` is registered for every lifecycle event clhud understands. Each
invocation reads the hook payload from stdin, writes one JSON line into the
session's FIFO, and keeps ``refresh.json`` pointed at the current session.
It must never block or fail the agent, so every error ends in exit code 0.
"""

from __future__ import annotations

import errno
import fcntl
import json
import logging
import os
import re
import select
import signal
import sys
import tempfile
import time
from pathlib import Path
from typing import Any

import psutil

from .config import EVENTS_DIR, PID_FILE, REFRESH_FILE
from .models import EventKind

logger = logging.getLogger(__name__)

SETTINGS_PATH = Path.home() / ".claude" / "settings.json"
HOOK_COMMAND = "clhud-hook"
HOOK_EVENTS = [kind.value for kind in EventKind]

WRITE_TIMEOUT = 1.0  # seconds a hook may wait on a full pipe
_MAX_STALE_FIFOS = 200
_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _atomic_write_json(path: Path, data: dict) -> bool:
    """Atomic, locked write of a JSON file.

    Uses flock + temp file + rename so readers never see a half-written file
    and concurrent hook processes don't clobber each other.
    """
    lock_path = path.with_suffix(path.suffix + ".lock")
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(lock_path, "w") as lock_fd:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            tmp_path: Path | None = None
            try:
                fd = tempfile.NamedTemporaryFile(
                    mode="w", dir=path.parent, suffix=".tmp", delete=False
                )
                tmp_path = Path(fd.name)
                json.dump(data, fd, indent=2)
                fd.flush()
                fd.close()
                tmp_path.rename(path)
                return True
            except OSError:
                if tmp_path is not None:
                    tmp_path.unlink(missing_ok=True)
                return False
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
    except OSError:
        return False


def _safe_write_settings(settings: dict) -> bool:
    return _atomic_write_json(SETTINGS_PATH, settings)


def _read_settings() -> dict | None:
    """Current settings, {} if absent, None if unreadable (refuse to overwrite)."""
    if not SETTINGS_PATH.exists():
        return {}
    try:
        with SETTINGS_PATH.open() as f:
            settings = json.load(f)
    except (json.JSONDecodeError, OSError):
        return None
    return settings if isinstance(settings, dict) else None


def _hook_entry() -> dict:
    return {"matcher": "", "hooks": [{"type": "command", "command": HOOK_COMMAND}]}


def _is_our_entry(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    return any(
        isinstance(h, dict) and h.get("command") == HOOK_COMMAND
        for h in entry.get("hooks") or []
    )


def install_hooks() -> bool:
    """Register clhud-hook for every event kind in ~/.claude/settings.json.

    Preserves existing hooks. Returns True if installed (or already present).
    """
    settings = _read_settings()
    if settings is None:
        return False

    hooks = settings.setdefault("hooks", {})
    if not isinstance(hooks, dict):
        return False

    changed = False
    for event in HOOK_EVENTS:
        entries = hooks.setdefault(event, [])
        if not isinstance(entries, list):
            return False
        if not any(_is_our_entry(e) for e in entries):
            entries.append(_hook_entry())
            changed = True

    if not changed:
        return True
    return _safe_write_settings(settings)


def uninstall_hooks() -> bool:
    """Remove clhud entries from settings. True if removed or never present."""
    if not SETTINGS_PATH.exists():
        return True

    settings = _read_settings()
    if settings is None:
        return False

    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        return True

    for event in HOOK_EVENTS:
        entries = hooks.get(event)
        if not isinstance(entries, list):
            continue
        hooks[event] = [e for e in entries if not _is_our_entry(e)]
        if not hooks[event]:
            del hooks[event]

    if not hooks:
        del settings["hooks"]

    return _safe_write_settings(settings)


def is_hooks_installed() -> bool:
    """True only if every event kind has a clhud entry."""
    settings = _read_settings()
    if not settings:
        return False

    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        return False

    return all(
        isinstance(hooks.get(event), list) and any(_is_our_entry(e) for e in hooks[event])
        for event in HOOK_EVENTS
    )


def fifo_path_for(session_id: str) -> Path:
    safe_id = _UNSAFE_ID_CHARS.sub("_", session_id) or "unknown"
    return EVENTS_DIR / f"{safe_id}.fifo"


def build_record(payload: dict) -> dict:
    """Translate a Claude Code hook payload into a dashboard wire record."""
    return {
        "event": payload.get("hook_event_name") or "",
        "tool": payload.get("tool_name"),
        "toolUseId": payload.get("tool_use_id"),
        "input": payload.get("tool_input"),
        "response": payload.get("tool_response"),
        "session": payload.get("session_id"),
        "ts": time.time(),
        "permissionMode": payload.get("permission_mode"),
        "cwd": payload.get("cwd"),
        "transcriptPath": payload.get("transcript_path"),
        "prompt": payload.get("prompt"),
    }


def ensure_fifo(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        os.mkfifo(path, 0o600)
    except FileExistsError:
        pass
    except OSError as e:
        logger.warning(f"Cannot create FIFO {path}: {e}")
        return False
    return True


def write_record(path: Path, record: dict, timeout: float = WRITE_TIMEOUT) -> bool:
    """Write one line to the FIFO. False when no dashboard is reading."""
    data = (json.dumps(record, default=str) + "\n").encode("utf-8")
    try:
        fd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
    except OSError as e:
        if e.errno not in (errno.ENXIO, errno.ENOENT):
            logger.warning(f"Cannot open FIFO {path}: {e}")
        return False

    deadline = time.monotonic() + timeout
    view = memoryview(data)
    try:
        while view:
            try:
                written = os.write(fd, view)
                view = view[written:]
            except BlockingIOError:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                select.select([], [fd], [], remaining)
        return True
    except OSError as e:
        # EPIPE: the reader went away mid-write.
        logger.debug(f"Write to {path} failed: {e}")
        return False
    finally:
        os.close(fd)


def update_refresh_descriptor(session_id: str, fifo_path: Path, transcript_path: str | None) -> bool:
    """Point refresh.json at this session. Returns True if it changed."""
    try:
        current = json.loads(REFRESH_FILE.read_text())
    except (json.JSONDecodeError, OSError):
        current = {}

    descriptor = {"sessionId": session_id, "fifoPath": str(fifo_path)}
    if transcript_path:
        descriptor["transcriptPath"] = transcript_path
    if current == descriptor:
        return False
    if isinstance(current, dict) and current.get("sessionId") == session_id and not transcript_path:
        return False

    return _atomic_write_json(REFRESH_FILE, descriptor)


def notify_dashboard() -> bool:
    """Best-effort SIGUSR1 to the running dashboard."""
    try:
        pid = int(PID_FILE.read_text().strip())
    except (OSError, ValueError):
        return False

    if not psutil.pid_exists(pid):
        return False

    try:
        os.kill(pid, signal.SIGUSR1)
    except (ProcessLookupError, PermissionError):
        return False
    return True


def cleanup_stale_fifos(keep: Path) -> int:
    """Remove FIFOs left behind by earlier sessions.

    Returns:
        Number of FIFOs removed
    """
    if not EVENTS_DIR.exists():
        return 0

    removed = 0
    for i, fifo in enumerate(EVENTS_DIR.glob("*.fifo")):
        if i >= _MAX_STALE_FIFOS:
            break
        if fifo == keep:
            continue
        try:
            fifo.unlink()
            removed += 1
        except OSError:
            pass

    return removed


def emit(payload: dict) -> bool:
    """Handle one hook invocation. True if the record reached a reader."""
    session_id = payload.get("session_id")
    if not isinstance(session_id, str) or not session_id:
        session_id = "unknown"

    fifo = fifo_path_for(session_id)
    if not ensure_fifo(fifo):
        return False

    if update_refresh_descriptor(session_id, fifo, payload.get("transcript_path")):
        cleanup_stale_fifos(keep=fifo)
        notify_dashboard()

    return write_record(fifo, build_record(payload))


def main() -> None:
    """Entry point for clhud-hook."""
    try:
        payload = json.load(sys.stdin)
    except (json.JSONDecodeError, UnicodeDecodeError, OSError):
        sys.exit(0)

    if isinstance(payload, dict):
        emit(payload)
    sys.exit(0)


if __name__ == "__main__":
    main()
