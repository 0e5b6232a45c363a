"""Key-value property store backed by the central SQLite database.

**STORAGE POLICY**: InboxQ keeps all small persisted state (daily budget
counters, pending-action queues, flags) in ONE table of ONE SQLite file
(``inboxq/data/inboxq.db`` unless INBOXQ_DB_PATH says otherwise).

Values are plain strings; callers serialize (ints, JSON lists) themselves.
"""

from __future__ import annotations

import random
import sqlite3
import time
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from threading import Lock
from typing import Any, Protocol, TypeVar

from inboxq.config import (
    DB_CONNECT_TIMEOUT,
    DB_PATH,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
)
from inboxq.observability.logging import get_logger
from inboxq.observability.telemetry import counter

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)

_JITTER = 0.1


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors.

    Side Effects:
        - Sleeps between retries (exponential backoff with jitter)
        - Logs a warning per retry and an error when retries are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise
                    if attempt >= max_retries:
                        logger.error("Database lock retry exhausted after %d attempts: %s", max_retries, e)
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * _JITTER)
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    time.sleep(sleep_time)
            raise RuntimeError("Unexpected exit from retry loop")

        return wrapper  # type: ignore[return-value]

    return decorator


class PropertyStore(Protocol):
    """Minimal key-value contract used by budget counters and agent queues."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class SqlitePropertyStore:
    """
    SQLite implementation of PropertyStore.

    Holds a single connection for the lifetime of the store so that
    ``":memory:"`` works for tests. Access is serialized with a lock; this
    protects one process, not two concurrent runs sharing the file.
    """

    def __init__(self, db_path: Path | str = DB_PATH) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            self.db_path, timeout=DB_CONNECT_TIMEOUT, check_same_thread=False
        )
        self._lock = Lock()
        self._ensure_table()

    def _ensure_table(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS properties (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            self._conn.commit()

    @retry_on_db_lock()
    def get(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM properties WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    @retry_on_db_lock()
    def set(self, key: str, value: str) -> None:
        """
        Upsert a property.

        Side Effects:
            - Writes to the properties table
        """
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO properties (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            self._conn.commit()
        counter("properties.write")

    @retry_on_db_lock()
    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM properties WHERE key = ?", (key,))
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
