"""Resilience helpers: in-memory TTL cache and retry on transient store errors."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from typing import Any

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


# ── TTL Cache ───────────────────────────────────────────────

class TTLCache:
    """In-memory dict with expiry timestamps and eviction at 1000 entries."""

    MAX_ENTRIES = 1000

    def __init__(self) -> None:
        self._store: dict[str, tuple[Any, float]] = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.time() > expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        with self._lock:
            if len(self._store) >= self.MAX_ENTRIES and key not in self._store:
                self._evict_oldest()
            self._store[key] = (value, time.time() + ttl_seconds)

    def delete_prefix(self, prefix: str) -> int:
        """Drop every key starting with `prefix`; returns how many went."""
        with self._lock:
            doomed = [k for k in self._store if k.startswith(prefix)]
            for k in doomed:
                del self._store[k]
            return len(doomed)

    def _evict_oldest(self) -> None:
        """Remove the entry with the earliest expiry."""
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k][1])
        del self._store[oldest_key]


# ── Retry on transient store errors ─────────────────────────

def is_transient_db_error(exc: BaseException) -> bool:
    """SQLite lock contention is worth retrying; anything else is not."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return "database is locked" in msg or "database is busy" in msg


def retry_on_locked(attempts: int = 3):
    """Retry a whole write unit when SQLite reports lock contention.

    Only wrap functions that are all-or-nothing (one transaction() block),
    so a retry never re-applies half of a previous attempt.
    """
    return retry(
        retry=retry_if_exception(is_transient_db_error),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        stop=stop_after_attempt(max(1, attempts)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
