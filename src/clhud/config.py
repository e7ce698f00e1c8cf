"""Paths and user settings for clhud."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)

HUD_DIR = Path.home() / ".claude" / "hud"
EVENTS_DIR = HUD_DIR / "events"         # One FIFO per session: {session_id}.fifo
REFRESH_FILE = HUD_DIR / "refresh.json"  # Descriptor of the current session
PID_FILE = HUD_DIR / "hud.pid"           # Running dashboard, for SIGUSR1
LOG_FILE = HUD_DIR / "hud.log"
CONFIG_FILE = HUD_DIR / "config.json"


class HudConfig(BaseSettings):
    """Dashboard settings, from config.json with CLHUD_* environment overrides."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_prefix="CLHUD_",
    )

    # Polling
    transcript_poll_interval: float = Field(default=5.0, gt=0)   # seconds
    refresh_poll_interval: float = Field(default=2.0, gt=0)      # seconds; backs up SIGUSR1
    reconnect_interval: float = Field(default=0.5, gt=0)         # seconds between FIFO open attempts

    # Logging
    log_level: str = "INFO"

    # Model substring -> context window, on top of the built-in table
    context_limits: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Values from config.json arrive as init kwargs; the environment wins over them.
        return env_settings, init_settings

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("context_limits", mode="before")
    @classmethod
    def _positive_limits(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            str(k): v for k, v in value.items()
            if isinstance(v, int) and not isinstance(v, bool) and v > 0
        }


def load_config(path: Path | None = None) -> HudConfig:
    """Read config.json, keeping defaults for anything missing or malformed."""
    path = path or CONFIG_FILE
    if not path.exists():
        return HudConfig()

    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return HudConfig()

    if not isinstance(data, dict):
        return HudConfig()

    values = {k: v for k, v in data.items() if k in HudConfig.model_fields}
    try:
        return HudConfig(**values)
    except ValidationError as e:
        bad = {err["loc"][0] for err in e.errors() if err["loc"]}
        logger.warning(f"Ignoring invalid config values in {path}: {', '.join(sorted(map(str, bad)))}")

    return HudConfig(**{k: v for k, v in values.items() if k not in bad})
