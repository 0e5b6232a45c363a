"""
Centralized environment loader for InboxQ.

Side Effects:
    - Loads the .env file from the project root (once per process)

Usage:
    from inboxq.infrastructure.env import ensure_env_loaded, get_env_int

    ensure_env_loaded()
    batch_size = get_env_int("BATCH_SIZE", 10, minimum=1)
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from inboxq.errors import ConfigurationError

_ENV_LOADED = False


def ensure_env_loaded(env_path: Path | None = None) -> None:
    """
    Ensure the .env file is loaded exactly once.

    Args:
        env_path: Optional path to .env file. If None, searches upward for one.

    Side Effects:
        - Loads environment variables from .env file (existing vars win)
        - Sets module-level flag to prevent double-loading
    """
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    if env_path is None:
        current = Path(__file__).parent
        while current != current.parent:
            candidate = current / ".env"
            if candidate.exists():
                env_path = candidate
                break
            current = current.parent

    if env_path and env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()
    _ENV_LOADED = True


def get_env_bool(key: str, default: bool) -> bool:
    """Parse a boolean env var ("true/1/yes" or "false/0/no")."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    raise ConfigurationError(key, f"expected a boolean, got {raw!r}")


def get_env_int(key: str, default: int, *, minimum: int = 0) -> int:
    """Parse an integer env var, enforcing a lower bound."""
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(key, f"expected an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(key, f"must be >= {minimum}, got {value}")
    return value
