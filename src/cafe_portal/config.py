# src/cafe_portal/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Components receive values from Settings; stores never read the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "CAFE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except ImportError:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


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


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


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

    # ---- Connector flags ----
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path
    ledger_db_path: Path
    sessions_db_path: Path

    # ---- Sessions / login ----
    session_ttl_seconds: int
    otp_ttl_seconds: int
    otp_max_attempts: int
    admin_usernames: list[str]

    # ---- Background work ----
    sweep_interval_seconds: float
    delivery_timeout_seconds: float
    webhook_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "cafe-portal") or "cafe-portal"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/cafe_portal"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        ledger_db_path = _env_path(_k("LEDGER_DB_PATH"), data_dir / "ledger.sqlite3")
        sessions_db_path = _env_path(_k("SESSIONS_DB_PATH"), data_dir / "sessions.sqlite3")

        session_ttl_seconds = _env_int(_k("SESSION_TTL_SECONDS"), 24 * 60 * 60)
        otp_ttl_seconds = _env_int(_k("OTP_TTL_SECONDS"), 5 * 60)
        otp_max_attempts = _env_int(_k("OTP_MAX_ATTEMPTS"), 5)
        admin_usernames = _env_list(_k("ADMIN_USERNAMES"), ["admin"])

        sweep_interval_seconds = _env_float(_k("SWEEP_INTERVAL_SECONDS"), 60.0)
        delivery_timeout_seconds = _env_float(_k("DELIVERY_TIMEOUT_SECONDS"), 5.0)
        webhook_timeout_seconds = _env_float(_k("WEBHOOK_TIMEOUT_SECONDS"), 5.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            ledger_db_path=ledger_db_path,
            sessions_db_path=sessions_db_path,
            session_ttl_seconds=session_ttl_seconds,
            otp_ttl_seconds=otp_ttl_seconds,
            otp_max_attempts=otp_max_attempts,
            admin_usernames=admin_usernames,
            sweep_interval_seconds=sweep_interval_seconds,
            delivery_timeout_seconds=delivery_timeout_seconds,
            webhook_timeout_seconds=webhook_timeout_seconds,
        )


SETTINGS = Settings.from_env()

# ---- Optional local overrides (never committed) ----
# Prefer .env; use config_local.py only for safe overrides.
try:
    import config_local as _config_local  # type: ignore

    if hasattr(_config_local, "CONSOLE_ENABLED"):
        object.__setattr__(SETTINGS, "console_enabled", bool(_config_local.CONSOLE_ENABLED))  # type: ignore[misc]
except ImportError:
    pass


def get_settings() -> Settings:
    return SETTINGS
