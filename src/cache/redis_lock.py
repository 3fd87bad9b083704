"""
Job Lock
========

Non-blocking mutual exclusion for background jobs.

A process-local lock always applies. When a Redis URL is configured the
lock is also taken in Redis, so two workers sharing one store never run
the same job at once. If Redis is unreachable the lock falls back to
process-local only.

Usage:
    lock = JobLock("consolidation", redis_url=os.getenv("REDIS_URL"))
    if lock.acquire():
        try:
            ...
        finally:
            lock.release()

Environment variables:
    REDIS_URL - Full Redis URL (redis://host:port/db)
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import redis

logger = logging.getLogger(__name__)


class JobLock:
    """
    Try-lock for one named job.

    acquire() never waits: it returns False when another run holds the lock.
    """

    def __init__(
        self,
        name: str,
        redis_url: Optional[str] = None,
        prefix: str = "memory",
        timeout_seconds: int = 3600,
    ):
        """
        Args:
            name: Job name, used in the Redis key
            redis_url: Optional Redis URL. If None, the lock is process-local.
            prefix: Key prefix for namespace isolation
            timeout_seconds: Redis lock expiry, so a crashed worker cannot hold it forever
        """
        self.name = name
        self.key = f"{prefix}:lock:{name}"
        self.timeout_seconds = timeout_seconds

        self._local = threading.Lock()
        self._redis: Optional[redis.Redis] = None
        self._held: Optional[Any] = None

        if redis_url:
            self._connect(redis_url)

    def _connect(self, redis_url: str) -> None:
        """Establish Redis connection."""
        try:
            self._redis = redis.from_url(
                redis_url,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            # Test connection
            self._redis.ping()
            host = redis_url.split("@")[-1] if "@" in redis_url else redis_url
            logger.info(f"Job lock '{self.name}' using Redis: {host}")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Job lock '{self.name}' is process-local.")
            self._redis = None

    @property
    def distributed(self) -> bool:
        return self._redis is not None

    @property
    def locked(self) -> bool:
        return self._local.locked()

    def acquire(self) -> bool:
        """
        Take the lock without waiting.

        Returns:
            True if this caller now holds the lock
        """
        if not self._local.acquire(blocking=False):
            return False

        if self._redis is None:
            return True

        try:
            lock = self._redis.lock(self.key, timeout=self.timeout_seconds)
            if not lock.acquire(blocking=False):
                self._local.release()
                logger.info(f"Job '{self.name}' already running in another worker")
                return False
            self._held = lock
        except redis.RedisError as e:
            logger.warning(f"Redis lock failed: {e}. Continuing with process-local lock.")

        return True

    def release(self) -> None:
        """Release the lock. Releasing a lock that expired in Redis only logs."""
        if self._held is not None:
            try:
                self._held.release()
            except redis.RedisError as e:
                logger.warning(f"Redis lock release failed: {e}")
            self._held = None
        self._local.release()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Context manager yielding whether the lock was acquired."""
        acquired = self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "backend": "redis" if self.distributed else "memory",
            "locked": self.locked,
        }

    def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            self._redis.close()
            self._redis = None
