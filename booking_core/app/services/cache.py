"""
Redis-backed JSON cache used for availability range queries and
idempotent results.

Cache failures are logged and treated as misses: the database stays the
source of truth.
"""

import json
import logging
from typing import Any, Optional, Protocol

from redis import Redis

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: int) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def delete_pattern(self, pattern: str) -> int: ...


class RedisCache:
    """Redis cache wrapper with JSON serialization."""

    def __init__(self, redis: Redis):
        self.redis = redis

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self.redis.get(key)
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

        if value is None:
            logger.debug(f"Cache MISS: {key}")
            return None
        logger.debug(f"Cache HIT: {key}")
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            self.redis.setex(key, ttl, json.dumps(value, default=str))
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False
        logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
        return True

    def delete(self, key: str) -> bool:
        try:
            self.redis.delete(key)
        except Exception as e:
            logger.error(f"Cache delete error for {key}: {e}")
            return False
        return True

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g. 'availability:p1:*')."""
        try:
            keys = list(self.redis.scan_iter(match=pattern))
            if not keys:
                return 0
            deleted = self.redis.delete(*keys)
        except Exception as e:
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0
        logger.debug(f"Cache DELETE pattern: {pattern} ({deleted} keys)")
        return deleted
