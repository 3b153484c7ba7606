"""Key-value backends for queues, status records and the redeemed-token ledger."""

from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Dict, Iterator, List, Optional, Tuple

import redis

from app.core.config import settings
from app.services.errors import StoreUnavailable

Updater = Callable[[Optional[str]], str]


class KeyValueStore:
    """
    List + string operations the dispatcher relies on.

    Lists are pushed on the left and popped on the right; ``rpush`` exists
    only to hand a job back to the consuming end.
    """

    def lpush(self, key: str, value: str) -> int:
        raise NotImplementedError

    def rpush(self, key: str, value: str) -> int:
        raise NotImplementedError

    def rpop(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def llen(self, key: str) -> int:
        raise NotImplementedError

    def lrange(self, key: str, start: int, end: int) -> List[str]:
        raise NotImplementedError

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_s: Optional[int] = None) -> None:
        raise NotImplementedError

    def set_if_absent(self, key: str, value: str, ttl_s: Optional[int] = None) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def update(self, key: str, fn: Updater, ttl_s: Optional[int] = None) -> Tuple[Optional[str], str]:
        """Atomically replace ``key`` with ``fn(current)``; returns (previous, new)."""
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError


class RedisStore(KeyValueStore):
    def __init__(self, url: str, socket_timeout: float = 5.0) -> None:
        self.client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    @contextmanager
    def _guard(self) -> Iterator[None]:
        try:
            yield
        except redis.RedisError as exc:
            raise StoreUnavailable(f"kv store error: {exc.__class__.__name__}") from exc

    def lpush(self, key: str, value: str) -> int:
        with self._guard():
            return int(self.client.lpush(key, value))

    def rpush(self, key: str, value: str) -> int:
        with self._guard():
            return int(self.client.rpush(key, value))

    def rpop(self, key: str) -> Optional[str]:
        with self._guard():
            return self.client.rpop(key)

    def llen(self, key: str) -> int:
        with self._guard():
            return int(self.client.llen(key))

    def lrange(self, key: str, start: int, end: int) -> List[str]:
        with self._guard():
            return list(self.client.lrange(key, start, end))

    def get(self, key: str) -> Optional[str]:
        with self._guard():
            return self.client.get(key)

    def set(self, key: str, value: str, ttl_s: Optional[int] = None) -> None:
        with self._guard():
            self.client.set(key, value, ex=ttl_s)

    def set_if_absent(self, key: str, value: str, ttl_s: Optional[int] = None) -> bool:
        with self._guard():
            return bool(self.client.set(key, value, ex=ttl_s, nx=True))

    def delete(self, key: str) -> None:
        with self._guard():
            self.client.delete(key)

    def update(self, key: str, fn: Updater, ttl_s: Optional[int] = None) -> Tuple[Optional[str], str]:
        # optimistic transaction: retry if another writer touched the key
        with self._guard():
            with self.client.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(key)
                        prev = pipe.get(key)
                        new = fn(prev)
                        pipe.multi()
                        pipe.set(key, new, ex=ttl_s)
                        pipe.execute()
                        return prev, new
                    except redis.WatchError:
                        continue

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


class MemoryStore(KeyValueStore):
    """In-process backend for tests and single-process local runs."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._lists: Dict[str, Deque[str]] = {}
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        item = self._values.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    def _put(self, key: str, value: str, ttl_s: Optional[int]) -> None:
        expires_at = self._clock() + ttl_s if ttl_s else None
        self._values[key] = (value, expires_at)

    def lpush(self, key: str, value: str) -> int:
        with self._lock:
            q = self._lists.setdefault(key, deque())
            q.appendleft(value)
            return len(q)

    def rpush(self, key: str, value: str) -> int:
        with self._lock:
            q = self._lists.setdefault(key, deque())
            q.append(value)
            return len(q)

    def rpop(self, key: str) -> Optional[str]:
        with self._lock:
            q = self._lists.get(key)
            return q.pop() if q else None

    def llen(self, key: str) -> int:
        with self._lock:
            return len(self._lists.get(key) or ())

    def lrange(self, key: str, start: int, end: int) -> List[str]:
        with self._lock:
            items = list(self._lists.get(key) or ())
        n = len(items)
        if start < 0:
            start = max(0, n + start)
        if end < 0:
            end = n + end
        return items[start : end + 1]

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: str, ttl_s: Optional[int] = None) -> None:
        with self._lock:
            self._put(key, value, ttl_s)

    def set_if_absent(self, key: str, value: str, ttl_s: Optional[int] = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._put(key, value, ttl_s)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
            self._lists.pop(key, None)

    def update(self, key: str, fn: Updater, ttl_s: Optional[int] = None) -> Tuple[Optional[str], str]:
        with self._lock:
            prev = self._live(key)
            new = fn(prev)
            self._put(key, new, ttl_s)
            return prev, new

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._lists.clear()
            self._values.clear()


_STORE_SINGLETON: Dict[str, KeyValueStore] = {}


def get_store() -> KeyValueStore:
    """
    Return the configured backend, chosen by ``KV_BACKEND`` (``redis`` or
    ``memory``). Cached, since every request resolves it.
    """
    backend = settings.kv_backend.lower()
    if backend in _STORE_SINGLETON:
        return _STORE_SINGLETON[backend]

    store: KeyValueStore
    if backend == "memory":
        store = MemoryStore()
    elif backend == "redis":
        store = RedisStore(settings.redis_url)
    else:
        raise ValueError(f"Unknown KV_BACKEND: {backend}")

    _STORE_SINGLETON[backend] = store
    return store
