"""Keyed result store with bounded retention.

Bridges stateless request handlers: a dispatch or callback writes a result
under a correlation key, and a later status query reads it back. Entries
expire after ``ttl_seconds`` whether or not anyone read them; the workflow
record stays the durable copy.
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Protocol

import redis

from podflow.core.errors import PodflowError


class JobStoreError(PodflowError):
    """Raised when the backing key-value service fails."""


class JobStore(Protocol):
    ttl_seconds: float

    def get(self, key: str) -> dict[str, Any] | None: ...

    def put(self, key: str, value: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def reset(self) -> None: ...


class InMemoryJobStore:
    """Dict-backed store with an injectable clock.

    Reads drop the entry they hit once it is stale. Writes also sweep the whole
    map, at most once per retention window, so slots nobody reads again are
    still evicted.
    """

    def __init__(self, ttl_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + ttl_seconds

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
        return json.loads(payload)

    def put(self, key: str, value: dict[str, Any]) -> None:
        payload = json.dumps(value)
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            self._entries[key] = (now + self.ttl_seconds, payload)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def _sweep(self, now: float) -> int:
        """Drop every stale entry. Caller holds the lock."""

        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self.ttl_seconds
        return len(expired)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            return self._sweep(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisJobStore:
    """Redis-backed store; expiry is delegated to SETEX."""

    def __init__(self, client: redis.Redis, ttl_seconds: float = 600.0, prefix: str = "podflow:") -> None:
        self.ttl_seconds = ttl_seconds
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: float = 600.0) -> "RedisJobStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> dict[str, Any] | None:
        try:
            payload = self._client.get(self._key(key))
        except redis.RedisError as exc:
            raise JobStoreError(f"Redis GET failed for key={key!r}: {exc}") from exc
        if payload is None:
            return None
        return json.loads(payload)

    def put(self, key: str, value: dict[str, Any]) -> None:
        ttl = max(1, int(self.ttl_seconds))
        try:
            self._client.setex(self._key(key), ttl, json.dumps(value))
        except redis.RedisError as exc:
            raise JobStoreError(f"Redis SETEX failed for key={key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as exc:
            raise JobStoreError(f"Redis DELETE failed for key={key!r}: {exc}") from exc

    def reset(self) -> None:
        try:
            keys = list(self._client.scan_iter(match=f"{self._prefix}*"))
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as exc:
            raise JobStoreError(f"Redis reset failed: {exc}") from exc
