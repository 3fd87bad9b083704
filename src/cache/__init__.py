"""
Cache Module
============

Redis-backed coordination with fallback to process-local state.

Usage:
    from src.cache import JobLock

    lock = JobLock("consolidation", redis_url=settings.store.redis_url)
    with lock.hold() as acquired:
        if acquired:
            run_job()
"""

from .redis_lock import JobLock

__all__ = ["JobLock"]
