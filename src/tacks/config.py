# src/tacks/config.py

"""Centralized settings loaded from environment variables (+ .env).

Design goals:
- One Settings object for the whole app.
- Every value has a working default, so a bare `tk` run needs no setup.
- Front ends may override single values (e.g. `--db`) with `dataclasses.replace`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

ENV_PREFIX = "TACKS"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    log_to_file: bool

    # ---- Local data paths ----
    data_dir: Path
    db_path: Path

    # ---- Task defaults ----
    id_prefix: str
    agent_name: str
    ready_limit: int

    # ---- Storage ----
    busy_timeout: float

    @staticmethod
    def from_env() -> Settings:
        app_name = _env(_k("APP_NAME"), "tacks").strip() or "tacks"
        log_level = _env(_k("LOG_LEVEL"), "WARNING").strip().upper() or "WARNING"
        log_to_file = _env_bool(_k("LOG_FILE"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".tacks"))
        db_path = _env_path(_k("DB"), data_dir / "tacks.db")

        id_prefix = _env(_k("PREFIX"), "tk").strip() or "tk"
        agent_name = _env(_k("AGENT_NAME"), "agent").strip() or "agent"
        ready_limit = max(_env_int(_k("READY_LIMIT"), 5), 0)

        busy_timeout = max(_env_float(_k("BUSY_TIMEOUT"), 30.0), 0.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            log_to_file=log_to_file,
            data_dir=data_dir,
            db_path=db_path,
            id_prefix=id_prefix,
            agent_name=agent_name,
            ready_limit=ready_limit,
            busy_timeout=busy_timeout,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings; `.env` in the working directory is read on first use."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(find_dotenv(usecwd=True), override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
