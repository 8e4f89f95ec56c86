import json
import logging
import time
from typing import Any, Optional

import redis

from config import config

class CacheService:
    """Redis cache for Drive folder listings shown in the destination picker"""

    def __init__(self):
        self.enabled = config.REDIS_CACHE_ENABLED and not config.USE_MOCK_DRIVE
        self.client = None
        self._logger = logging.getLogger("toolboard_drive.cache")
        self._last_failure_logged_at: Optional[float] = None

        if self.enabled:
            try:
                self.client = redis.from_url(
                    config.REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    health_check_interval=30,
                    retry_on_timeout=True,
                    client_name="toolboard-drive",
                )
                self.client.ping()
                self._logger.info(
                    "Redis cache enabled", extra={"ttl": config.REDIS_DEFAULT_TTL}
                )
            except redis.RedisError as e:
                self._log_failure("Redis connection failed, cache disabled", e)
                self.enabled = False
                self.client = None
        else:
            reason = "mock mode" if config.USE_MOCK_DRIVE else "REDIS_CACHE_ENABLED=false"
            self._logger.info("Redis cache disabled", extra={"reason": reason})

    def get_from_cache(self, key: str) -> Optional[Any]:
        """
        Retrieve value from cache.

        Returns:
            Cached value (deserialized from JSON) or None if not found/disabled
        """
        if not self.enabled or not self.client:
            return None

        try:
            value = self.client.get(key)
            if value:
                return json.loads(value)
            return None
        except (redis.RedisError, ValueError) as e:
            self._log_failure(f"Cache GET error for key '{key}'", e)
            return None

    def set_in_cache(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store value in cache (JSON-serialized) for `ttl` seconds, REDIS_DEFAULT_TTL by default.
        """
        if not self.enabled or not self.client:
            return False

        try:
            self.client.setex(key, ttl or config.REDIS_DEFAULT_TTL, json.dumps(value))
            return True
        except (redis.RedisError, TypeError) as e:
            self._log_failure(f"Cache SET error for key '{key}'", e)
            return False

    def delete_key(self, key: str) -> bool:
        if not self.enabled or not self.client:
            return False

        try:
            return self.client.delete(key) > 0
        except redis.RedisError as e:
            self._log_failure(f"Cache DELETE error for key '{key}'", e)
            return False

    def _log_failure(self, message: str, exception: Exception) -> None:
        """Log failures without flooding logs."""

        now = time.time()
        if self._last_failure_logged_at is None or now - self._last_failure_logged_at > 60:
            self._last_failure_logged_at = now
            self._logger.warning(message, extra={"error": str(exception)})

# Global cache instance
cache_service = CacheService()
