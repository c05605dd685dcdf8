"""API rate limiting utility for Marquee."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterator

from marquee.utils.logger import get_logger

logger = get_logger("utils.rate_limiter")


class RateLimiter:
    """Thread-safe rate limiter that enforces minimum intervals between calls.

    Uses per-service locks so that waiting on one service does not block
    requests to a different service.  Resolutions running on the
    orchestrator's worker threads all share the catalog slot.

    Usage:
        limiter = RateLimiter()
        limiter.wait("catalog", 0.25)
    """

    def __init__(self) -> None:
        self._last_call: dict[str, float] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._meta_lock = threading.Lock()  # protects _locks dict creation

    def _get_lock(self, service_name: str) -> threading.Lock:
        """Get or create a per-service lock."""
        if service_name not in self._locks:
            with self._meta_lock:
                if service_name not in self._locks:
                    self._locks[service_name] = threading.Lock()
        return self._locks[service_name]

    def wait(self, service_name: str, min_interval: float) -> float:
        """Block until enough time has passed since the last call to this service.

        The slot is reserved while holding the lock, so two threads that
        arrive together are spaced ``min_interval`` apart instead of both
        waking at the same instant.

        Args:
            service_name: Identifier for the API service (e.g. "catalog").
            min_interval: Minimum seconds between requests.

        Returns:
            Seconds actually slept.
        """
        lock = self._get_lock(service_name)

        with lock:
            now = time.monotonic()
            last = self._last_call.get(service_name)
            if last is None:
                slot = now
            else:
                slot = max(now, last + min_interval)
            self._last_call[service_name] = slot

        sleep_time = slot - now
        # Sleep outside the lock so other services aren't blocked
        if sleep_time > 0:
            logger.debug("Rate limit: sleeping %.2fs for %s", sleep_time, service_name)
            time.sleep(sleep_time)
        return max(0.0, sleep_time)

    def reset(self, service_name: str | None = None) -> None:
        """Forget recorded call times (all services when *service_name* is None)."""
        with self._meta_lock:
            if service_name is None:
                self._last_call.clear()
            else:
                self._last_call.pop(service_name, None)


# Shared across catalog clients in one process
rate_limiter = RateLimiter()


class KeyedLocks:
    """Registry of re-entrant locks keyed by an identifier.

    Used to serialize work on a single media record without a global lock.
    A key's lock exists only while some thread holds or waits on it, so
    the registry stays as small as the set of records being worked on.

    Usage:
        locks = KeyedLocks()
        with locks.hold(record_id):
            ...
    """

    def __init__(self) -> None:
        # key -> [lock, number of threads holding or waiting]
        self._locks: dict[object, list] = {}
        self._meta_lock = threading.Lock()

    @contextmanager
    def hold(self, key: object) -> Iterator[None]:
        """Acquire the lock for *key*, releasing and forgetting it on exit."""
        with self._meta_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._meta_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
