"""
Thread-level coordination helpers.

FastAPI runs the synchronous route handlers in a threadpool, so per-owner
coordination uses ``threading`` primitives:

- ``SingleFlight``: coalesce concurrent calls for the same key into one.
- ``KeyedGuard``: allow at most one holder per key, rejecting the rest.
- ``Deadline``: a monotonic budget shared by the steps of one operation.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Set, TypeVar

T = TypeVar("T")


class SingleFlight:
    """
    Run at most one call per key at a time; concurrent callers share its outcome.

    The first caller for a key (the leader) executes ``fn``. Callers arriving
    while the leader is running block until it finishes and receive the same
    return value, or the same exception.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: Dict[str, Future] = {}

    def do(self, key: str, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._calls


class KeyedGuard:
    """Non-blocking mutual exclusion per key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: Set[str] = set()

    def try_acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._held.discard(key)

    @contextmanager
    def hold(self, key: str, on_busy: Callable[[], BaseException]) -> Iterator[None]:
        """Hold ``key`` for the duration of the block or raise ``on_busy()``."""
        if not self.try_acquire(key):
            raise on_busy()
        try:
            yield
        finally:
            self.release(key)


class Deadline:
    """A point in monotonic time after which an operation must stop."""

    def __init__(self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def timeout(self, ceiling: float) -> float:
        """Per-call timeout: the smaller of ``ceiling`` and what is left."""
        remaining = self.remaining()
        if remaining is None:
            return ceiling
        return min(ceiling, remaining)
