"""
Cache layer for resolved association sets.

Entries are keyed per entity (and per team scope for principals) and expire
after a TTL. ``get_or_load`` is single-flight per key: concurrent misses on the
same key run the loader once. An invalidation that races with a load wins,
the loaded value is returned to its caller but never stored.
"""
import threading
import time
from typing import Any, Callable, Dict, Optional, TypeVar

from pydantic import BaseModel

from gatekeeper.core.types import ANY_TEAM, EntityKind, OwnerRef
from gatekeeper.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")

KEY_PREFIX = "gatekeeper"

_UNSCOPED = object()


def cache_key(owner: OwnerRef, association, team: Any = _UNSCOPED) -> str:
    """
    Build the deterministic cache key of an association set.

    Without ``team`` the key is also the prefix shared by every team-scoped
    variant, which ``AuthzCache.invalidate_prefix`` relies on.
    """
    if isinstance(association, EntityKind):
        association = association.value
    key = f"{KEY_PREFIX}:{owner.token}:{association}"
    if team is _UNSCOPED:
        return key
    if team is ANY_TEAM:
        return f"{key}:team=*"
    if team is None:
        return f"{key}:team=global"
    return f"{key}:team={team}"


class CacheEntry(BaseModel):
    """A cached association set."""

    key: str
    value: Any
    created_at: float
    expires_at: float
    hit_count: int = 0
    last_accessed: float


class CacheStats(BaseModel):
    """Cache statistics."""

    total_entries: int = 0
    total_hits: int = 0
    total_misses: int = 0
    hit_rate: float = 0.0
    invalidations: int = 0


class _KeyLoad:
    """
    Single-flight lock of one key, shared by the callers loading it.

    The record lives while ``refs`` is positive; ``generation`` is bumped by
    invalidations so a load started before one is not stored.
    """
    __slots__ = ("lock", "refs", "generation")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0
        self.generation = 0


class AuthzCache:
    """
    Thread-safe in-memory TTL cache.

    Bookkeeping is bounded: ``max_entries`` caps stored values and a key's
    load record is dropped as soon as no caller is loading it.
    """

    def __init__(
        self,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._loads: Dict[str, _KeyLoad] = {}
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    def _fresh_entry(self, key: str, now: float) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def _hit(self, key: str) -> Optional[CacheEntry]:
        now = self._clock()
        entry = self._fresh_entry(key, now)
        if entry is not None:
            entry.hit_count += 1
            entry.last_accessed = now
            self._hits += 1
        return entry

    def _acquire_load(self, key: str) -> _KeyLoad:
        with self._lock:
            load = self._loads.get(key)
            if load is None:
                load = self._loads[key] = _KeyLoad()
            load.refs += 1
            return load

    def _release_load(self, key: str, load: _KeyLoad) -> None:
        with self._lock:
            load.refs -= 1
            if load.refs == 0:
                del self._loads[key]

    def _drop(self, key: str) -> None:
        self._entries.pop(key, None)
        load = self._loads.get(key)
        if load is not None:
            load.generation += 1

    def _evict_if_needed(self, now: float) -> None:
        if len(self._entries) < self.max_entries:
            return
        expired = [k for k, v in self._entries.items() if v.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            oldest = sorted(self._entries.items(), key=lambda item: item[1].last_accessed)
            for key, _ in oldest[: len(self._entries) - self.max_entries + 1]:
                del self._entries[key]

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None, without loading."""
        with self._lock:
            entry = self._fresh_entry(key, self._clock())
            return entry.value if entry else None

    def get_or_load(self, key: str, ttl: int, loader: Callable[[], T]) -> T:
        """
        Return the value cached under ``key``, running ``loader`` on a miss.

        A ``ttl`` of zero or less disables storing the loaded value.
        """
        with self._lock:
            entry = self._hit(key)
            if entry is not None:
                return entry.value

        load = self._acquire_load(key)
        try:
            with load.lock:
                with self._lock:
                    entry = self._hit(key)
                    if entry is not None:
                        return entry.value
                    generation = load.generation
                    self._misses += 1

                log.debug(f"Cache miss for {key}")
                value = loader()

                if ttl > 0:
                    with self._lock:
                        if load.generation == generation:
                            now = self._clock()
                            self._evict_if_needed(now)
                            self._entries[key] = CacheEntry(
                                key=key,
                                value=value,
                                created_at=now,
                                expires_at=now + ttl,
                                last_accessed=now,
                            )
                        else:
                            log.debug(f"Discarding value loaded for {key}: invalidated during load")
                return value
        finally:
            self._release_load(key, load)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._drop(key)
            self._invalidations += 1

    def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate ``prefix`` itself and every key nested under it."""
        with self._lock:
            known = set(self._entries) | set(self._loads)
            keys = [k for k in known if k == prefix or k.startswith(prefix + ":")]
            for key in keys:
                self._drop(key)
            self._invalidations += 1
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            for load in self._loads.values():
                load.generation += 1
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                total_entries=len(self._entries),
                total_hits=self._hits,
                total_misses=self._misses,
                hit_rate=self._hits / total if total else 0.0,
                invalidations=self._invalidations,
            )


class NullCache(AuthzCache):
    """Cache used when caching is disabled: every read goes to the store."""

    def get(self, key: str) -> Optional[Any]:
        return None

    def get_or_load(self, key: str, ttl: int, loader: Callable[[], T]) -> T:
        with self._lock:
            self._misses += 1
        return loader()


def create_cache(use_cache: bool = True, **kwargs) -> AuthzCache:
    if use_cache:
        return AuthzCache(**kwargs)
    return NullCache(**kwargs)
