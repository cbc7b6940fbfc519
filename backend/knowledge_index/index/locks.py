"""Distributed and in-process mutual exclusion with expiring, token-owned locks."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator, Protocol

from knowledge_index.core.logging import get_logger
from knowledge_index.utils.ids import new_id

logger = get_logger(__name__)

KEYWORD_TABLE_LOCK = "lock:keyword_table:update:keyword_table_{dataset_id}"
DOCUMENT_ENABLED_LOCK = "lock:document:update:enabled_{document_id}"
SEGMENT_ENABLED_LOCK = "lock:segment:update:enabled_{segment_id}"
SEGMENT_POSITION_LOCK = "lock:segment:allocate:position_{document_id}"

RETRY_INTERVAL_SECONDS = 0.1

# Deletes the key only while it still holds the caller's token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockService(Protocol):
    def acquire(self, key: str, token: str, ttl: int, wait: float) -> bool: ...

    def release(self, key: str, token: str) -> bool: ...


class RedisLockService:
    """``SET key token NX EX ttl`` with polling, released through a compare-and-delete script."""

    def __init__(self, client: Any, retry_interval: float = RETRY_INTERVAL_SECONDS) -> None:
        self.client = client
        self.retry_interval = retry_interval
        self._release = client.register_script(_RELEASE_SCRIPT)

    def acquire(self, key: str, token: str, ttl: int, wait: float) -> bool:
        deadline = time.monotonic() + wait
        while True:
            if self.client.set(key, token, nx=True, ex=ttl):
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.retry_interval)

    def release(self, key: str, token: str) -> bool:
        return bool(self._release(keys=[key], args=[token]))


class InMemoryLockService:
    """Process-local lock table for single-process deployments and tests."""

    def __init__(self) -> None:
        self._holders: dict[str, tuple[str, float]] = {}
        self._cond = threading.Condition()

    def _expire(self, key: str, now: float) -> None:
        holder = self._holders.get(key)
        if holder is not None and holder[1] <= now:
            del self._holders[key]

    def acquire(self, key: str, token: str, ttl: int, wait: float) -> bool:
        deadline = time.monotonic() + wait
        with self._cond:
            while True:
                now = time.monotonic()
                self._expire(key, now)
                if key not in self._holders:
                    self._holders[key] = (token, now + ttl)
                    return True
                remaining = deadline - now
                if remaining <= 0:
                    return False
                expires_in = self._holders[key][1] - now
                self._cond.wait(timeout=min(remaining, max(expires_in, 0.0)))

    def release(self, key: str, token: str) -> bool:
        with self._cond:
            self._expire(key, time.monotonic())
            holder = self._holders.get(key)
            if holder is None or holder[0] != token:
                return False
            del self._holders[key]
            self._cond.notify_all()
            return True

    def is_locked(self, key: str) -> bool:
        with self._cond:
            self._expire(key, time.monotonic())
            return key in self._holders


@contextmanager
def hold_lock(service: LockService, key: str, ttl: int, wait: float) -> Iterator[bool]:
    """Acquire ``key`` with a fresh token; yields whether the lock was obtained."""
    token = new_id()
    acquired = service.acquire(key, token, ttl, wait)
    try:
        yield acquired
    finally:
        if acquired and not service.release(key, token):
            logger.warning("Lock expired before release", extra={"ctx_lock": key})


__all__ = [
    "KEYWORD_TABLE_LOCK",
    "DOCUMENT_ENABLED_LOCK",
    "SEGMENT_ENABLED_LOCK",
    "SEGMENT_POSITION_LOCK",
    "LockService",
    "RedisLockService",
    "InMemoryLockService",
    "hold_lock",
]
