"""
lockpid.config
──────────────────
Single place for defaults that can be tuned per host.

Lookup order: environment variable > .env file > built-in default.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# ── .env (loaded once) ────────────────────────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(_PROJECT_ROOT / ".env", override=False)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


# ── Paths ─────────────────────────────────────────────────────────

def project_root() -> Path:
    """Project root (detected, never hard-coded)."""
    return _PROJECT_ROOT


def default_lock_dir() -> str:
    """Directory lock files live in. LOCKPID_LOCK_DIR overrides it."""
    return os.getenv("LOCKPID_LOCK_DIR", "").strip() or "/var/lock"


def lock_log_file() -> Path | None:
    """Event log file, or None when event logging is off."""
    custom_path = os.getenv("LOCKPID_LOG_FILE", "").strip()
    if custom_path:
        return Path(custom_path).expanduser()
    return None


# ── Polling ───────────────────────────────────────────────────────

def default_sleep_msecs() -> float:
    """Milliseconds between polls while waiting for a busy lock."""
    return max(0.0, float(os.getenv("LOCKPID_SLEEP_MSECS", "20.0")))


# ── Logging ───────────────────────────────────────────────────────

def lock_log_level() -> str:
    level = os.getenv("LOCKPID_LOG_LEVEL", "INFO").strip().upper()
    return level if level in _LOG_LEVELS else "INFO"
