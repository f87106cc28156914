"""
Multi-instance infrastructure for the royalty ledger.

Usage:
    from scaling import get_lock_manager

    lock_manager = get_lock_manager()
    with lock_manager.lock("track:abc"):
        distribute()
"""

import logging
import os
from typing import TYPE_CHECKING

from scaling.locking import LocalLockManager, LockManager

if TYPE_CHECKING:
    from scaling.locking import RedisLockManager

logger = logging.getLogger(__name__)

__all__ = [
    "LockManager",
    "LocalLockManager",
    "get_lock_manager",
]


def get_lock_manager(redis_url: str | None = None) -> LockManager:
    """
    Build a lock manager.

    Uses Redis for distributed locking if a Redis URL is given (or REDIS_URL
    is set), otherwise local threading locks.
    """
    redis_url = redis_url or os.getenv("REDIS_URL")
    if redis_url:
        from scaling.locking import RedisLockManager

        logger.info("Using Redis lock manager")
        return RedisLockManager(redis_url)
    return LocalLockManager()
