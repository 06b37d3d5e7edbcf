import json
import logging
from typing import Any, Optional

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

STATS_KEY_PREFIX = "alerts:stats"


def statistics_key(period: str, category: Optional[str] = None) -> str:
    return f"{STATS_KEY_PREFIX}:{period}:{category or 'all'}"


class CacheManager:
    """Manager for Redis cache operations; a Redis outage degrades to cache misses"""

    def __init__(self, redis_client: Optional[Redis]):
        self.redis = redis_client

    def get(self, key: str) -> Optional[str]:
        """Get value from cache"""
        if not self.redis:
            return None
        try:
            value = self.redis.get(key)
            return value.decode("utf-8") if value else None
        except RedisError as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        """Set value in cache with TTL"""
        if not self.redis:
            return False
        try:
            return bool(self.redis.setex(key, ttl, value))
        except RedisError as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern"""
        if not self.redis:
            return 0
        try:
            keys = list(self.redis.scan_iter(match=pattern))
            if keys:
                return self.redis.delete(*keys)
            return 0
        except RedisError as e:
            logger.warning(f"Cache delete pattern error for {pattern}: {e}")
            return 0

    def get_json(self, key: str) -> Optional[Any]:
        """Get JSON value from cache"""
        value = self.get(key)
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                logger.warning(f"Discarding undecodable cache entry {key}")
                return None
        return None

    def set_json(self, key: str, value: Any, ttl: int = 3600) -> bool:
        """Set JSON value in cache"""
        return self.set(key, json.dumps(value, default=str), ttl)

    def invalidate_statistics(self) -> int:
        """Drop every cached statistics result"""
        return self.delete_pattern(f"{STATS_KEY_PREFIX}:*")
