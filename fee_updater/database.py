"""
Pending Update Persistence

Redis-backed storage for the in-flight update so a transaction broadcast
before a restart is reconciled afterwards instead of being resubmitted.
Falls back to an in-process cache when Redis is unreachable.
"""

from typing import Optional, Dict, Any
from datetime import datetime
import json
import logging

import redis
from redis.exceptions import ConnectionError as RedisConnectionError

from .types import PendingUpdate
from .config import RedisConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Redis Manager
# ============================================================================

class RedisManager:
    """Redis connection manager with fallback to in-memory cache"""

    def __init__(self, config: RedisConfig):
        self.config = config
        self.client: Optional[redis.Redis] = None
        self._in_memory_cache: Dict[str, Any] = {}
        self._use_fallback = False
        self._connect()

    def _connect(self):
        """Connect to Redis"""
        try:
            self.client = redis.Redis(
                host=self.config.host,
                port=self.config.port,
                password=self.config.password,
                db=self.config.db,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30
            )
            self.client.ping()
            self._use_fallback = False
            logger.info("Redis connection established")
        except RedisConnectionError as e:
            logger.warning(f"Redis connection failed, using in-memory fallback: {e}")
            self._use_fallback = True

    @property
    def using_fallback(self) -> bool:
        return self._use_fallback

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Set key-value with optional TTL"""
        ttl = ttl or self.config.ttl_seconds

        if self._use_fallback:
            self._in_memory_cache[key] = (value, datetime.utcnow())
            return True

        try:
            self.client.setex(key, ttl, value)
            return True
        except RedisConnectionError:
            logger.warning("Redis set failed, switching to fallback")
            self._use_fallback = True
            self._in_memory_cache[key] = (value, datetime.utcnow())
            return True

    def get(self, key: str) -> Optional[str]:
        """Get value by key"""
        if self._use_fallback:
            if key in self._in_memory_cache:
                value, timestamp = self._in_memory_cache[key]
                age = (datetime.utcnow() - timestamp).total_seconds()
                if age < self.config.ttl_seconds:
                    return value
                del self._in_memory_cache[key]
            return None

        try:
            return self.client.get(key)
        except RedisConnectionError:
            logger.warning("Redis get failed, switching to fallback")
            self._use_fallback = True
            return self.get(key)

    def delete(self, key: str) -> bool:
        """Delete key"""
        if self._use_fallback:
            self._in_memory_cache.pop(key, None)
            return True

        try:
            self.client.delete(key)
            return True
        except RedisConnectionError:
            logger.warning("Redis delete failed, switching to fallback")
            self._use_fallback = True
            self._in_memory_cache.pop(key, None)
            return True


# ============================================================================
# Pending Update Store
# ============================================================================

class PendingUpdateStore:
    """Saves the single pending update of one contract under a fixed key"""

    def __init__(self, redis_manager: RedisManager, contract_address: str):
        self.redis = redis_manager
        self.key = f"pending_update:{contract_address.lower()}"

    def save(self, pending: PendingUpdate):
        self.redis.set(self.key, json.dumps(pending.to_dict()))
        logger.debug(f"Pending update saved: {pending.to_dict()}")

    def load(self) -> Optional[PendingUpdate]:
        raw = self.redis.get(self.key)
        if not raw:
            return None
        try:
            return PendingUpdate.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            # Unreadable record; start from Idle rather than trust it
            logger.error(f"Discarding corrupt pending update record {self.key}: {e}")
            self.redis.delete(self.key)
            return None

    def clear(self):
        self.redis.delete(self.key)
        logger.debug(f"Pending update cleared: {self.key}")

