# src/jobflow/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole process.
- Every value has a working default; nothing is required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "JOBFLOW"

load_dotenv(override=False)


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

    # ---- Jobs ----
    # "module:callable" returning the list of JobDefinition to register.
    jobs_factory: str

    # ---- Scheduler timing ----
    poll_interval_seconds: float
    continuation_delay_ms: int
    worker_poll_interval_seconds: float
    lease_seconds: float

    # ---- Operator console ----
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    queue_db_path: Path
    mailbox_db_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "jobflow").strip() or "jobflow"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        jobs_factory = _env(_k("JOBS_FACTORY"), "jobflow.jobs.examples:default_jobs")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/jobflow"))
        queue_db_path = _env_path(_k("QUEUE_DB_PATH"), data_dir / "queues.sqlite3")
        # Share this file with the processes that publish events.
        mailbox_db_path = _env_path(_k("MAILBOX_DB_PATH"), data_dir / "mailboxes.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            jobs_factory=jobs_factory,
            poll_interval_seconds=_env_float(_k("POLL_INTERVAL_SECONDS"), 1.0),
            continuation_delay_ms=_env_int(_k("CONTINUATION_DELAY_MS"), 1000),
            worker_poll_interval_seconds=_env_float(_k("WORKER_POLL_INTERVAL_SECONDS"), 0.1),
            lease_seconds=_env_float(_k("LEASE_SECONDS"), 30.0),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            data_dir=data_dir,
            queue_db_path=queue_db_path,
            mailbox_db_path=mailbox_db_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
