"""Session-scoped permission cache.

Holds the signed-in user's profile and permission payload so page navigations do not
refetch it on every request. Advisory only: API handlers always re-read the database.

Storage is a plain key-value backend. ``MemoryStorage`` keeps entries in-process;
``RedisStorage`` persists them across worker restarts when PERMISSION_CACHE_URL is set.
Every key carries a storage expiry (the retention window, refreshed on write), so
sessions that never log out age out. All keys of one session live under
``perm-cache:<namespace>:`` and ``clear_user()`` deletes them in a single call.
"""
from __future__ import annotations
import json
import logging
import threading
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Iterable, Optional

import redis

from quantum_crm.config.cache import (CACHE_KEY_PREFIX, DEFAULT_RETENTION_MINUTES, DEFAULT_TTL_MINUTES, LEGACY_KEYS,
                                      MEMORY_SWEEP_INTERVAL_SECONDS)

logger = logging.getLogger(__name__)


@dataclass
class AppUser:
    id: int
    email: str
    name: str
    role: str
    country_id: Optional[int] = None
    is_active: bool = True
    is_deleted: bool = False
    # Explicit payload, or the role defaults when is_role_default is set
    permissions: Optional[Dict[str, Any]] = None
    is_role_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppUser':
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


class MemoryStorage:
    """In-process storage. ``ttl`` (seconds) on a write sets the key's expiry;
    expired keys read as missing and are swept on later writes."""

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 sweep_interval: float = MEMORY_SWEEP_INTERVAL_SECONDS):
        self._data: Dict[str, str] = {}
        self._expires: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._data)

    def _expired(self, key: str, now: float) -> bool:
        expires = self._expires.get(key)
        return expires is not None and expires <= now

    def _drop(self, key: str):
        self._data.pop(key, None)
        self._expires.pop(key, None)

    def _sweep(self, now: float):
        # caller holds the lock
        if now < self._next_sweep:
            return
        for key in [k for k, exp in self._expires.items() if exp <= now]:
            self._drop(key)
        self._next_sweep = now + self._sweep_interval

    def _write(self, key: str, value: str, ttl: Optional[float], now: float):
        self._data[key] = value
        if ttl is not None:
            self._expires[key] = now + ttl
        else:
            self._expires.pop(key, None)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            if self._expired(key, self._clock()):
                self._drop(key)
                return None
            return self._data.get(key)

    def set(self, key: str, value: str, ttl: Optional[float] = None):
        with self._lock:
            now = self._clock()
            self._sweep(now)
            self._write(key, value, ttl, now)

    def incr(self, key: str, ttl: Optional[float] = None) -> int:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            if self._expired(key, now):
                self._drop(key)
            value = int(self._data.get(key, 0)) + 1
            if ttl is None and key in self._expires:
                ttl = self._expires[key] - now
            self._write(key, str(value), ttl, now)
        return value

    def delete(self, *keys: str):
        with self._lock:
            for key in keys:
                self._drop(key)

    def scan(self, prefix: str) -> Iterable[str]:
        with self._lock:
            now = self._clock()
            return [k for k in list(self._data) if k.startswith(prefix) and not self._expired(k, now)]


class RedisStorage:
    def __init__(self, url: str, client: Optional[redis.Redis] = None):
        self.client = client or redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: Optional[float] = None):
        self.client.set(key, value, ex=int(ttl) if ttl is not None else None)

    def incr(self, key: str, ttl: Optional[float] = None) -> int:
        value = int(self.client.incr(key))
        if ttl is not None:
            self.client.expire(key, int(ttl))
        return value

    def delete(self, *keys: str):
        if keys:
            # single DEL: the teardown is atomic
            self.client.delete(*keys)

    def scan(self, prefix: str) -> Iterable[str]:
        return list(self.client.scan_iter(match=f"{prefix}*"))


def build_storage(url: Optional[str]):
    if url:
        logger.info("Permission cache backed by redis")
        return RedisStorage(url)
    return MemoryStorage()


class PermissionCache:
    USER_KEY = 'user'
    LAST_FETCHED_KEY = 'last_fetched'
    HITS_KEY = 'hits'
    MISSES_KEY = 'misses'

    def __init__(self, storage, namespace: str, ttl_minutes: float = DEFAULT_TTL_MINUTES,
                 clock: Callable[[], float] = time.time,
                 retention_minutes: float = DEFAULT_RETENTION_MINUTES):
        self.storage = storage
        self.namespace = namespace
        self.ttl_minutes = ttl_minutes
        # stale entries must stay readable until refetched
        self.retention_minutes = max(retention_minutes, ttl_minutes)
        self._clock = clock

    @property
    def retention_seconds(self) -> int:
        return int(self.retention_minutes * 60)

    def _key(self, name: str) -> str:
        return f"{CACHE_KEY_PREFIX}:{self.namespace}:{name}"

    def all_keys(self):
        names = (self.USER_KEY, self.LAST_FETCHED_KEY, self.HITS_KEY, self.MISSES_KEY) + tuple(LEGACY_KEYS)
        return [self._key(n) for n in names]

    @property
    def user(self) -> Optional[AppUser]:
        raw = self.storage.get(self._key(self.USER_KEY))
        if not raw:
            return None
        try:
            return AppUser.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning("Discarding unreadable cache entry %s: %s", self.namespace, e)
            return None

    @property
    def last_fetched(self) -> Optional[float]:
        raw = self.storage.get(self._key(self.LAST_FETCHED_KEY))
        return float(raw) if raw is not None else None

    def is_stale(self, ttl_minutes: Optional[float] = None) -> bool:
        ttl = self.ttl_minutes if ttl_minutes is None else ttl_minutes
        last = self.last_fetched
        if self.user is None or last is None:
            return True
        return self._clock() - last > ttl * 60

    def get_user_from_cache(self) -> Optional[AppUser]:
        if self.is_stale():
            return None
        self.storage.incr(self._key(self.HITS_KEY), ttl=self.retention_seconds)
        return self.user

    def update_cache(self, user: AppUser):
        ttl = self.retention_seconds
        self.storage.set(self._key(self.USER_KEY), json.dumps(user.to_dict()), ttl=ttl)
        self.storage.set(self._key(self.LAST_FETCHED_KEY), repr(self._clock()), ttl=ttl)
        self.storage.incr(self._key(self.MISSES_KEY), ttl=ttl)

    def increment_cache_miss(self):
        self.storage.incr(self._key(self.MISSES_KEY), ttl=self.retention_seconds)

    def clear_user(self):
        self.storage.delete(*self.all_keys())

    def stats(self) -> Dict[str, Any]:
        hits = int(self.storage.get(self._key(self.HITS_KEY)) or 0)
        misses = int(self.storage.get(self._key(self.MISSES_KEY)) or 0)
        total = hits + misses
        return {
            'hits': hits,
            'misses': misses,
            'hit_ratio': round(hits / total * 100, 1) if total else 0.0,
        }


def invalidate_user_caches(storage, user_id: int) -> int:
    """Clear every session cache currently holding user_id. Returns the number cleared."""
    cleared = 0
    suffix = f":{PermissionCache.USER_KEY}"
    for key in storage.scan(f"{CACHE_KEY_PREFIX}:"):
        if not key.endswith(suffix):
            continue
        namespace = key[len(CACHE_KEY_PREFIX) + 1:-len(suffix)]
        cache = PermissionCache(storage, namespace)
        cached = cache.user
        if cached is not None and cached.id == user_id:
            cache.clear_user()
            cleared += 1
    if cleared:
        logger.info("Invalidated %s cached session(s) for user %s", cleared, user_id)
    return cleared
