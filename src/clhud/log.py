"""Logging setup. The terminal belongs to the TUI, so logs go to a file."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import LOG_FILE

FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO", path: Path | None = None) -> None:
    path = path or LOG_FILE
    root = logging.getLogger("clhud")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
    except OSError:
        handler = logging.NullHandler()

    handler.setFormatter(logging.Formatter(FORMAT, datefmt="%H:%M:%S"))
    root.handlers = [handler]
