"""
Key/value store used for rate-limit counters and other short-lived state.

Request handlers never touch a process-wide dict directly; they receive a store
through the `get_store` dependency. Production backs it with Redis so counters
are shared between workers, tests and single-process development use the
in-memory implementation.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import redis

from config import settings

logger = logging.getLogger(__name__)

# Full expiry sweep of the in-memory store at most this often
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


class KeyValueStore:
    """Minimal get/set/expire contract shared by every backend."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value, ex: Optional[int] = None) -> None:
        raise NotImplementedError

    def incr(self, key: str) -> int:
        raise NotImplementedError

    def expire(self, key: str, seconds: int) -> None:
        raise NotImplementedError

    def ttl(self, key: str) -> int:
        """Seconds until expiry, -1 when the key has no expiry, -2 when missing (Redis semantics)."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value, ex: Optional[int] = None) -> None:
        self._client.set(key, value, ex=ex)

    def incr(self, key: str) -> int:
        return int(self._client.incr(key))

    def expire(self, key: str, seconds: int) -> None:
        self._client.expire(key, seconds)

    def ttl(self, key: str) -> int:
        return int(self._client.ttl(key))

    def delete(self, key: str) -> None:
        self._client.delete(key)


class InMemoryKeyValueStore(KeyValueStore):
    """
    Thread-safe dict store. Not shared across processes.

    Expired keys are dropped when read, and writes trigger a full sweep at most
    once every `sweep_interval` seconds so keys that are never read again (one
    rate-limit counter per client IP) do not pile up.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (value, expires_at or None)
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    def _sweep_if_due(self) -> None:
        now = self._clock()
        if now - self._last_sweep < self._sweep_interval:
            return
        expired = [
            key for key, (_, expires_at) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._data[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired keys from in-memory store")

    def _live_entry(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry else None

    def set(self, key: str, value, ex: Optional[int] = None) -> None:
        with self._lock:
            self._sweep_if_due()
            expires_at = self._clock() + ex if ex else None
            self._data[key] = (str(value), expires_at)

    def incr(self, key: str) -> int:
        with self._lock:
            self._sweep_if_due()
            entry = self._live_entry(key)
            if entry is None:
                self._data[key] = ("1", None)
                return 1
            value, expires_at = entry
            new_value = int(value) + 1
            self._data[key] = (str(new_value), expires_at)
            return new_value

    def expire(self, key: str, seconds: int) -> None:
        with self._lock:
            entry = self._live_entry(key)
            if entry is not None:
                self._data[key] = (entry[0], self._clock() + seconds)

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            return max(0, int(round(entry[1] - self._clock())))

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    """FastAPI dependency returning the configured store (built once per process)."""
    global _store
    if _store is None:
        if settings.REDIS_URL:
            _store = RedisKeyValueStore.from_url(settings.REDIS_URL)
            logger.info("Rate limit store: Redis")
        else:
            _store = InMemoryKeyValueStore()
            logger.warning("REDIS_URL not set. Rate limit counters are kept in process memory")
    return _store
