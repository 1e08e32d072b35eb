"""
Ephemeral key-value state with per-key TTL.

All OTP, lockout and grant state lives here. Operations are atomic per
key; callers never rely on multi-key transactions. A missing key is a
normal outcome and reads as None.

Two engines share the StateStore contract:
- RedisStateStore: required when more than one API instance runs.
- InMemoryStateStore: single-process deployments and tests.
"""

import logging
import threading
import time
from functools import lru_cache
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def incr(self, key: str) -> int: ...

    def expire(self, key: str, ttl_seconds: int) -> bool: ...

    def ttl(self, key: str) -> Optional[int]: ...

    def ping(self) -> bool: ...


class RedisStateStore:
    """
    Redis-backed state store.

    Errors are not swallowed: a lockout check that silently passes when
    Redis is down would disable brute-force protection.
    """

    def __init__(self, client: redis.Redis):
        self.redis_client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisStateStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self.redis_client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.redis_client.set(key, value, ex=ttl_seconds)

    def delete(self, key: str) -> None:
        self.redis_client.delete(key)

    def incr(self, key: str) -> int:
        # INCR initializes a missing key to 0 before incrementing
        return int(self.redis_client.incr(key))

    def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(self.redis_client.expire(key, ttl_seconds))

    def ttl(self, key: str) -> Optional[int]:
        remaining = self.redis_client.ttl(key)
        # -2: key missing, -1: no expiry
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    def ping(self) -> bool:
        return bool(self.redis_client.ping())


class InMemoryStateStore:
    """
    Process-local state store with lazy expiry.

    Entries map key -> (value, expires_at). Expired entries are dropped on
    access, and writes sweep the whole map at most once per sweep_interval
    seconds so keys that are never read again do not accumulate. The clock
    is injectable so tests can step through TTLs.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.RLock()
        self._sweep_interval = sweep_interval
        self._next_sweep_at = clock() + sweep_interval

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def _maybe_sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep_at:
            return
        expired = [
            key for key, (_, expires_at) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._data[key]
        self._next_sweep_at = now + self._sweep_interval
        if expired:
            logger.debug(f"Swept {len(expired)} expired state entries")

    def _live_entry(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._maybe_sweep()
            self._data[key] = (str(value), self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def incr(self, key: str) -> int:
        with self._lock:
            self._maybe_sweep()
            entry = self._live_entry(key)
            if entry is None:
                self._data[key] = ("1", None)
                return 1
            value, expires_at = entry
            try:
                count = int(value) + 1
            except ValueError:
                raise ValueError(f"value at {key!r} is not an integer")
            # INCR keeps the existing TTL
            self._data[key] = (str(count), expires_at)
            return count

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False
            self._data[key] = (entry[0], self._clock() + ttl_seconds)
            return True

    def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None or entry[1] is None:
                return None
            return max(0, int(round(entry[1] - self._clock())))

    def ping(self) -> bool:
        return True


@lru_cache
def get_state_store() -> StateStore:
    """
    Process-wide state store selected by STATE_STORE_BACKEND.

    Used as a FastAPI dependency; tests override it with a fresh
    InMemoryStateStore.
    """
    if settings.STATE_STORE_BACKEND == "memory":
        logger.warning("Using in-memory state store; lockouts are not shared across instances")
        return InMemoryStateStore()

    logger.info(f"Using Redis state store at {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")
    return RedisStateStore.from_url(settings.REDIS_URL, socket_timeout=settings.REDIS_SOCKET_TIMEOUT)
