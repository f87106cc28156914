"""
Per-track locking for the royalty ledger.

Provides lock managers for serializing mutations of one track:
- LocalLockManager: Thread-based locks for single-instance deployments
- RedisLockManager: Distributed locks using Redis for multi-instance

Locks are not reentrant in either implementation; a caller that already
holds a track lock must not request it again.

Usage:
    from scaling import get_lock_manager

    lock_manager = get_lock_manager()

    # Context manager (recommended)
    with lock_manager.lock("track:abc", timeout=5):
        distribute()

    # Several locks, always taken in sorted order
    with lock_manager.lock_many(["track:b", "track:a"], timeout=5):
        batch_distribute()
"""

import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass


@dataclass
class LockInfo:
    """Information about a held lock."""

    name: str
    holder_id: str
    acquired_at: float
    ttl: float | None = None
    expires_at: float | None = None


class LockManager(ABC):
    """
    Abstract base class for lock managers.

    All lock managers must implement acquire/release/is_locked.
    """

    @abstractmethod
    def acquire(
        self,
        name: str,
        timeout: float = 30.0,
        ttl: float = 60.0,
    ) -> bool:
        """
        Acquire a named lock.

        Args:
            name: Lock identifier
            timeout: Maximum time to wait for lock (seconds)
            ttl: Lock time-to-live (auto-release after this time)

        Returns:
            True if lock acquired, False if timeout
        """
        pass

    @abstractmethod
    def release(self, name: str) -> bool:
        """
        Release a named lock.

        Returns:
            True if lock was held and released, False otherwise
        """
        pass

    @abstractmethod
    def is_locked(self, name: str) -> bool:
        """Check if a lock is currently held."""
        pass

    @contextmanager
    def lock(self, name: str, timeout: float = 30.0, ttl: float = 60.0):
        """
        Context manager for acquiring a lock.

        Raises:
            TimeoutError: If lock cannot be acquired within timeout
        """
        if not self.acquire(name, timeout=timeout, ttl=ttl):
            raise TimeoutError(f"Could not acquire lock '{name}' within {timeout}s")
        try:
            yield
        finally:
            self.release(name)

    def acquire_many(
        self,
        names: list[str],
        timeout: float = 30.0,
        ttl: float = 60.0,
    ) -> bool:
        """
        Acquire several locks in sorted order under one shared deadline.

        Duplicate names are acquired once. On failure every lock taken so
        far is released and False is returned.
        """
        deadline = time.monotonic() + timeout
        held: list[str] = []
        for name in sorted(set(names)):
            remaining = max(0.0, deadline - time.monotonic())
            if not self.acquire(name, timeout=remaining, ttl=ttl):
                for taken in reversed(held):
                    self.release(taken)
                return False
            held.append(name)
        return True

    def release_many(self, names: list[str]) -> None:
        """Release locks taken with acquire_many, in reverse order."""
        for name in sorted(set(names), reverse=True):
            self.release(name)

    @contextmanager
    def lock_many(self, names: list[str], timeout: float = 30.0, ttl: float = 60.0):
        """
        Context manager for acquiring several locks deadlock-free.

        Raises:
            TimeoutError: If the locks cannot all be acquired within timeout
        """
        if not self.acquire_many(names, timeout=timeout, ttl=ttl):
            raise TimeoutError(f"Could not acquire locks {sorted(set(names))} within {timeout}s")
        try:
            yield
        finally:
            self.release_many(names)

    def get_info(self, name: str) -> LockInfo | None:
        """Get information about a lock (if held)."""
        return None


class LocalLockManager(LockManager):
    """
    Thread-based lock manager for single-instance deployments.

    One threading.Lock per name, created on first use.
    """

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._lock_info: dict[str, LockInfo] = {}
        self._meta_lock = threading.Lock()
        self._instance_id = str(uuid.uuid4())[:8]

    def _get_lock(self, name: str) -> threading.Lock:
        """Get or create a lock by name."""
        with self._meta_lock:
            if name not in self._locks:
                self._locks[name] = threading.Lock()
            return self._locks[name]

    def acquire(
        self,
        name: str,
        timeout: float = 30.0,
        ttl: float = 60.0,
    ) -> bool:
        """Acquire a named lock."""
        lock = self._get_lock(name)
        acquired = lock.acquire(timeout=timeout)

        if acquired:
            now = time.time()
            self._lock_info[name] = LockInfo(
                name=name,
                holder_id=f"{self._instance_id}:{threading.current_thread().name}",
                acquired_at=now,
                ttl=ttl,
                expires_at=now + ttl if ttl else None,
            )

        return acquired

    def release(self, name: str) -> bool:
        """Release a named lock."""
        lock = self._get_lock(name)
        try:
            self._lock_info.pop(name, None)
            lock.release()
            return True
        except RuntimeError:
            # Lock was not held
            return False

    def is_locked(self, name: str) -> bool:
        """Check if a lock is currently held."""
        return name in self._lock_info

    def get_info(self, name: str) -> LockInfo | None:
        """Get information about a lock."""
        return self._lock_info.get(name)

    def get_all_locks(self) -> list[LockInfo]:
        """Get information about all held locks."""
        return list(self._lock_info.values())


class RedisLockManager(LockManager):
    """
    Distributed lock manager using Redis.

    Requires redis package: pip install redis

    Features:
    - Distributed across multiple instances
    - Automatic TTL-based expiration
    - Atomic acquire/release operations
    - Deadlock prevention via TTL
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "royalty:lock:",
    ):
        """
        Initialize Redis lock manager.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for lock keys in Redis
        """
        try:
            import redis
        except ImportError:
            raise ImportError("redis package required: pip install redis")

        self._redis = redis.from_url(redis_url)
        self._key_prefix = key_prefix
        self._instance_id = str(uuid.uuid4())
        self._held_locks: dict[str, str] = {}  # name -> lock_value

    def _key(self, name: str) -> str:
        """Get Redis key for a lock."""
        return f"{self._key_prefix}{name}"

    def acquire(
        self,
        name: str,
        timeout: float = 30.0,
        ttl: float = 60.0,
    ) -> bool:
        """
        Acquire a distributed lock.

        Uses SET NX with expiration for atomic acquire.
        """
        key = self._key(name)
        lock_value = f"{self._instance_id}:{time.time()}"
        ttl_ms = int(ttl * 1000)

        deadline = time.time() + timeout
        retry_delay = 0.05

        while True:
            if self._redis.set(key, lock_value, nx=True, px=ttl_ms):
                self._held_locks[name] = lock_value
                return True

            if time.time() >= deadline:
                return False

            time.sleep(retry_delay)
            retry_delay = min(retry_delay * 1.5, 0.5)

    def release(self, name: str) -> bool:
        """
        Release a distributed lock.

        Uses Lua script for atomic check-and-delete.
        """
        key = self._key(name)
        lock_value = self._held_locks.get(name)

        if not lock_value:
            return False

        release_script = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """

        result = self._redis.eval(release_script, 1, key, lock_value)
        self._held_locks.pop(name, None)
        return bool(result)

    def is_locked(self, name: str) -> bool:
        """Check if a lock is currently held."""
        return self._redis.exists(self._key(name)) > 0

    def get_info(self, name: str) -> LockInfo | None:
        """Get information about a lock."""
        key = self._key(name)
        value = self._redis.get(key)
        ttl = self._redis.ttl(key)

        if not value:
            return None

        try:
            holder_id, acquired_str = value.decode().rsplit(":", 1)
            acquired_at = float(acquired_str)
        except (ValueError, AttributeError):
            holder_id = value.decode() if isinstance(value, bytes) else str(value)
            acquired_at = 0

        return LockInfo(
            name=name,
            holder_id=holder_id,
            acquired_at=acquired_at,
            ttl=float(ttl) if ttl > 0 else None,
        )

    def close(self):
        """Close the Redis connection."""
        self._redis.close()
