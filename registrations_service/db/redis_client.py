"""
Redis client for Registrations Service.
Handles caching, pub/sub publishing and per-event distributed locking.
"""

import asyncio
import json
import time
import uuid
from typing import Optional, Dict, Any
import redis.asyncio as redis
from redis.asyncio import Redis
import logging

from registrations_service.core.config import config
from registrations_service.core.exceptions import LockTimeout

logger = logging.getLogger(__name__)

# Delete the lock only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisManager:
    """
    Redis manager for cache, pub/sub and lock operations.
    """

    def __init__(self):
        self.redis_client: Optional[Redis] = None
        self._initialized = False

    async def initialize(self):
        """Initialize Redis connection."""
        if self._initialized:
            return

        try:
            redis_url = await config.get_redis_url()
            self.redis_client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis_client.ping()
            self._initialized = True
            logger.info("Redis client initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis client: {e}")
            raise

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
        self._initialized = False
        logger.info("Redis connection closed")

    # Cache Operations
    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        """Get JSON value from cache."""
        if not self._initialized:
            await self.initialize()

        try:
            value = await self.redis_client.get(key)
        except Exception as e:
            logger.error(f"Redis get error for key {key}: {e}")
            return None

        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError as e:
                logger.error(f"JSON decode error for key {key}: {e}")
        return None

    async def set_json(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        """Set JSON value in cache with optional TTL."""
        if not self._initialized:
            await self.initialize()

        try:
            payload = json.dumps(value)
            if ttl:
                return bool(await self.redis_client.setex(key, ttl, payload))
            return bool(await self.redis_client.set(key, payload))
        except (TypeError, ValueError) as e:
            logger.error(f"JSON encode error for key {key}: {e}")
            return False
        except Exception as e:
            logger.error(f"Redis set error for key {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        if not self._initialized:
            await self.initialize()

        try:
            return await self.redis_client.delete(key) > 0
        except Exception as e:
            logger.error(f"Redis delete error for key {key}: {e}")
            return False

    # Pub/Sub
    async def publish(self, channel: str, message: str) -> int:
        """Publish a message; returns the number of subscribers that received it."""
        if not self._initialized:
            await self.initialize()

        return await self.redis_client.publish(channel, message)

    # Distributed Locking
    async def acquire_lock(self, lock_key: str, token: str, timeout: int = 30, blocking_timeout: int = 10) -> bool:
        """
        Acquire a distributed lock.

        Args:
            lock_key: Unique key for the lock
            token: Value identifying the holder
            timeout: Lock expiry in seconds
            blocking_timeout: Maximum time to wait for acquisition

        Returns:
            True if lock acquired, False otherwise
        """
        if not self._initialized:
            await self.initialize()

        end_time = time.monotonic() + blocking_timeout

        while time.monotonic() < end_time:
            if await self.redis_client.set(lock_key, token, nx=True, ex=timeout):
                logger.debug(f"Distributed lock acquired: {lock_key}")
                return True
            await asyncio.sleep(0.05)

        logger.warning(f"Failed to acquire lock {lock_key} within {blocking_timeout}s")
        return False

    async def release_lock(self, lock_key: str, token: str) -> bool:
        """Release a distributed lock held with the given token."""
        try:
            released = await self.redis_client.eval(_RELEASE_SCRIPT, 1, lock_key, token)
            if released:
                logger.debug(f"Distributed lock released: {lock_key}")
            return bool(released)
        except Exception as e:
            logger.error(f"Error releasing lock {lock_key}: {e}")
            return False

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            if not self._initialized:
                await self.initialize()
            return await self.redis_client.ping() is True
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False


# Global Redis manager instance
redis_manager = RedisManager()


class DistributedLock:
    """
    Context manager for distributed locks with automatic cleanup.
    """

    def __init__(self, redis_manager: RedisManager, lock_key: str, timeout: int = 30, blocking_timeout: int = 10):
        self.redis_manager = redis_manager
        self.lock_key = lock_key
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.token = uuid.uuid4().hex
        self.acquired = False

    async def __aenter__(self):
        self.acquired = await self.redis_manager.acquire_lock(
            self.lock_key,
            self.token,
            self.timeout,
            self.blocking_timeout
        )
        if not self.acquired:
            raise LockTimeout(
                "The resource is busy, please retry",
                details={"lock": self.lock_key}
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.acquired:
            await self.redis_manager.release_lock(self.lock_key, self.token)
            self.acquired = False


def get_distributed_lock(lock_key: str, timeout: int = 30, blocking_timeout: int = 10) -> DistributedLock:
    """Get a distributed lock context manager."""
    return DistributedLock(redis_manager, lock_key, timeout, blocking_timeout)


def event_lock_key(event_id: str) -> str:
    return f"registration:event:{event_id}"


def team_lock_key(team_id: str) -> str:
    return f"registration:team:{team_id}"
