"""Key-value storage with TTL semantics.

Components that need short-lived secrets receive a KeyValueStore instance
rather than reaching for shared module state. RedisKeyValueStore is the
production backend; MemoryKeyValueStore keeps its entries on the instance and
suits single-process setups and tests.
"""
import logging
import threading
import time
from typing import Callable, Protocol

from marketplace.core.config import settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class RedisKeyValueStore:
    def __init__(self, client=None, namespace: str = "marketplace"):
        self._client = client
        self.namespace = namespace

    def _get_client(self):
        if self._client is None:
            import redis

            self._client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=2)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> str | None:
        value = self._get_client().get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        client = self._get_client()
        if ttl_seconds:
            client.setex(self._key(key), ttl_seconds, value)
        else:
            client.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._get_client().delete(self._key(key))
