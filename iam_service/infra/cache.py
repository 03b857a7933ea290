from __future__ import annotations

import os
import threading
import time
from collections import OrderedDict
from functools import lru_cache
from typing import Generic, Protocol, TypeVar

from pydantic import BaseModel, ValidationError
from redis import Redis, RedisError

from iam_service.infra.redis_state import get_redis

CACHE_BACKEND = os.getenv("CACHE_BACKEND", "memory").lower()
CACHE_KEY_PREFIX = os.getenv("CACHE_KEY_PREFIX", "iam_service")
MEMORY_CACHE_MAX_ENTRIES = int(os.getenv("MEMORY_CACHE_MAX_ENTRIES", "100000"))
MEMORY_CACHE_SWEEP_SECONDS = float(os.getenv("MEMORY_CACHE_SWEEP_SECONDS", "60"))

ModelT = TypeVar("ModelT", bound=BaseModel)


class CacheError(Exception):
    pass


class CacheDecodeError(CacheError):
    pass


class CacheBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def incr(self, key: str, ttl_seconds: int) -> int: ...

    def ping(self) -> bool: ...


class MemoryCacheBackend:
    """In-process TTL cache shared by all request threads of one worker.

    Expired entries are swept on writes at most once per ``sweep_seconds``. When
    ``max_entries`` is reached the least recently written entry is evicted.
    """

    def __init__(
        self,
        clock=time.monotonic,
        *,
        max_entries: int = MEMORY_CACHE_MAX_ENTRIES,
        sweep_seconds: float = MEMORY_CACHE_SWEEP_SECONDS,
    ) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._sweep_seconds = sweep_seconds
        self._items: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._lock = threading.Lock()
        self._next_sweep = clock() + sweep_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _live(self, key: str) -> tuple[str, float] | None:
        item = self._items.get(key)
        if item is None:
            return None
        if item[1] <= self._clock():
            del self._items[key]
            return None
        return item

    def _sweep(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_seconds
        for key in [key for key, (_, expires_at) in self._items.items() if expires_at <= now]:
            del self._items[key]

    def _store(self, key: str, value: str, expires_at: float) -> None:
        self._sweep()
        self._items[key] = (value, expires_at)
        self._items.move_to_end(key)
        while len(self._items) > self._max_entries:
            self._items.popitem(last=False)

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._live(key)
            return item[0] if item is not None else None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._store(key, value, self._clock() + ttl_seconds)

    def incr(self, key: str, ttl_seconds: int) -> int:
        # The window starts at the first hit and is not extended by later ones.
        with self._lock:
            item = self._live(key)
            if item is None:
                self._store(key, "1", self._clock() + ttl_seconds)
                return 1
            count = int(item[0]) + 1
            self._store(key, str(count), item[1])
            return count

    def ping(self) -> bool:
        return True


class RedisCacheBackend:
    def __init__(self, client: Redis) -> None:
        self._client = client

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
        except RedisError as exc:
            raise CacheError(f"cache get failed for {key}") from exc
        return value if value is None else str(value)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheError(f"cache set failed for {key}") from exc

    def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            pipe = self._client.pipeline()
            pipe.incr(key)
            pipe.expire(key, ttl_seconds, nx=True)
            count, _ = pipe.execute()
        except RedisError as exc:
            raise CacheError(f"cache incr failed for {key}") from exc
        return int(count)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError:
            return False


class TypedCache(Generic[ModelT]):
    """Cache of pydantic models under ``<app prefix>_<namespace>_<key>``.

    Reads return the model or ``None`` on a miss. A stored value that does not
    decode to ``model`` raises :class:`CacheDecodeError` instead of being coerced.
    """

    def __init__(
        self,
        backend: CacheBackend,
        model: type[ModelT],
        *,
        namespace: str,
        ttl_seconds: int,
        prefix: str = CACHE_KEY_PREFIX,
    ) -> None:
        self.backend = backend
        self.model = model
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def make_key(self, key: str) -> str:
        return f"{self.prefix}_{self.namespace}_{key}"

    def get(self, key: str) -> ModelT | None:
        raw = self.backend.get(self.make_key(key))
        if raw is None:
            return None
        try:
            return self.model.model_validate_json(raw)
        except ValidationError as exc:
            raise CacheDecodeError(f"cached value for {key} is not a {self.model.__name__}") from exc

    def set(self, key: str, value: ModelT, ttl_seconds: int | None = None) -> None:
        self.backend.set(
            self.make_key(key),
            value.model_dump_json(),
            ttl_seconds if ttl_seconds is not None else self.ttl_seconds,
        )


@lru_cache(maxsize=1)
def get_cache_backend() -> CacheBackend:
    if CACHE_BACKEND == "redis":
        return RedisCacheBackend(get_redis())
    return MemoryCacheBackend()


def check_cache_ready() -> bool:
    try:
        return get_cache_backend().ping()
    except Exception:
        return False
