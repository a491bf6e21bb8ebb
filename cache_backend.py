"""Achievement catalog cache: Redis when REDIS_URL is set, else in-process.

Values are stored as JSON text so a cached catalog is never a shared
mutable object. Backend errors are logged and read as a miss.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import redis

from resilience import TTLCache

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any, ttl: int = 300) -> None: ...
    def delete_prefix(self, prefix: str) -> None: ...


def _encode(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def _decode(raw: Any) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw.decode() if isinstance(raw, bytes) else raw


class InMemoryCache:
    def __init__(self) -> None:
        self._store = TTLCache()

    def get(self, key: str) -> Any | None:
        raw = self._store.get(key)
        return None if raw is None else _decode(raw)

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        self._store.set(key, _encode(value), ttl)

    def delete_prefix(self, prefix: str) -> None:
        self._store.delete_prefix(prefix)


class RedisCache:
    """Shared across worker processes, so invalidation reaches all of them."""

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def get(self, key: str) -> Any | None:
        try:
            raw = self._redis.get(key)
        except redis.RedisError as e:
            logger.warning("Redis GET error (key=%s): %s", key, e)
            return None
        return None if raw is None else _decode(raw)

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        try:
            self._redis.setex(key, ttl, _encode(value))
        except redis.RedisError as e:
            logger.warning("Redis SET error (key=%s): %s", key, e)

    def delete_prefix(self, prefix: str) -> None:
        try:
            keys = list(self._redis.scan_iter(match=f"{prefix}*"))
            if keys:
                self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Redis DELETE prefix error (prefix=%s): %s", prefix, e)


_cache: CacheBackend | None = None


def init_cache(app) -> None:
    """Pick the backend once from create_app()."""
    global _cache

    redis_url = app.config.get("REDIS_URL", "")
    if redis_url:
        try:
            client = redis.Redis.from_url(redis_url, decode_responses=False)
            client.ping()
            _cache = RedisCache(client)
            app.logger.info("Catalog cache: Redis (%s)", redis_url)
            return
        except redis.RedisError as e:
            app.logger.warning("Redis connection failed (%s); catalog cache stays in-process.", e)

    _cache = InMemoryCache()
    app.logger.info("Catalog cache: in-process")


def get_cache() -> CacheBackend:
    global _cache
    if _cache is None:
        _cache = InMemoryCache()
    return _cache
