"""Runtime settings read from LISTING_INTAKE_* environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DB_PATH = "./data/listing_intake.db"
DEFAULT_ACTOR = "cli"
DEFAULT_HISTORY_LIMIT = 6
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass(frozen=True)
class Settings:
    db_path: Path
    actor_id: str
    history_limit: int
    log_level: str


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


def _log_level_env(name: str, default: str) -> str:
    level = (os.getenv(name) or default).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"{name} must be a logging level name, got {level!r}")
    return level


def load_settings() -> Settings:
    """Read the environment at call time so tests can patch os.environ."""
    return Settings(
        db_path=Path(os.getenv("LISTING_INTAKE_DB", DEFAULT_DB_PATH)),
        actor_id=os.getenv("LISTING_INTAKE_ACTOR", DEFAULT_ACTOR),
        history_limit=_int_env("LISTING_INTAKE_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT),
        log_level=_log_level_env("LISTING_INTAKE_LOG_LEVEL", DEFAULT_LOG_LEVEL),
    )
