from __future__ import annotations

import threading
import time
from typing import Protocol

import redis

from .config import Settings
from .observability import get_logger, safe_error

log = get_logger(__name__)

# INCRBYFLOAT and the first-write expiry run atomically in one script.
_INCR_WITH_EXPIRY_LUA = """
local total = redis.call('INCRBYFLOAT', KEYS[1], ARGV[1])
if redis.call('TTL', KEYS[1]) < 0 then
  redis.call('EXPIREAT', KEYS[1], ARGV[2])
end
return total
"""

# Deletes the key only while it still holds the caller's value.
_DELETE_IF_EQUALS_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class StoreUnavailable(RuntimeError):
    pass


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_s: int | None = None, nx: bool = False) -> bool: ...

    def delete(self, key: str) -> None: ...

    def delete_if_equals(self, key: str, value: str) -> bool: ...

    def incr_float_with_expiry(self, key: str, amount: float, expire_at_epoch: int) -> float: ...


class RedisStore:
    def __init__(self, url: str, socket_timeout_s: float = 2.0) -> None:
        self.url = url
        self._client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout_s,
            socket_connect_timeout=socket_timeout_s,
        )
        self._incr_script = self._client.register_script(_INCR_WITH_EXPIRY_LUA)
        self._delete_if_equals_script = self._client.register_script(_DELETE_IF_EQUALS_LUA)

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise StoreUnavailable(safe_error(exc)) from exc

    def set(self, key: str, value: str, ttl_s: int | None = None, nx: bool = False) -> bool:
        try:
            return bool(self._client.set(key, value, ex=ttl_s, nx=nx))
        except redis.RedisError as exc:
            raise StoreUnavailable(safe_error(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise StoreUnavailable(safe_error(exc)) from exc

    def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            return bool(self._delete_if_equals_script(keys=[key], args=[value]))
        except redis.RedisError as exc:
            raise StoreUnavailable(safe_error(exc)) from exc

    def incr_float_with_expiry(self, key: str, amount: float, expire_at_epoch: int) -> float:
        try:
            total = self._incr_script(keys=[key], args=[repr(float(amount)), int(expire_at_epoch)])
        except redis.RedisError as exc:
            raise StoreUnavailable(safe_error(exc)) from exc
        return float(total)


class MemoryStore:
    """Process-local store with the same semantics as ``RedisStore``.

    Used when no Redis URL is configured and in tests. Coordination only
    spans threads of one process in this mode.
    """

    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return entry

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_s: int | None = None, nx: bool = False) -> bool:
        with self._lock:
            if nx and self._live(key) is not None:
                return False
            expires_at = self._clock() + ttl_s if ttl_s else None
            self._data[key] = (value, expires_at)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[0] != value:
                return False
            del self._data[key]
            return True

    def incr_float_with_expiry(self, key: str, amount: float, expire_at_epoch: int) -> float:
        with self._lock:
            entry = self._live(key)
            current = float(entry[0]) if entry else 0.0
            expires_at = entry[1] if entry else None
            total = current + float(amount)
            if expires_at is None:
                expires_at = float(expire_at_epoch)
            self._data[key] = (repr(total), expires_at)
            return total

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            return int(entry[1] - self._clock())


def build_store(settings: Settings) -> KeyValueStore:
    if not settings.redis_url:
        log.warning("store_memory_mode", reason="ETYM_REDIS_URL not set")
        return MemoryStore()
    return RedisStore(settings.redis_url)
