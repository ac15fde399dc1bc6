# app/utils/locks.py
"""
Thread-level coordination primitives.

Requests run on FastAPI's threadpool and renewal runs on a worker pool, so
these are built on ``threading`` rather than asyncio.
"""
import contextlib
import threading
from typing import Any, Callable, Dict, Hashable, Iterator, Optional, TypeVar

from app.core.exceptions import ServiceTimeoutException

T = TypeVar("T")


class KeyedLock:
    """
    One mutex per key, created on demand and dropped when unused.

    Holders of different keys never block each other; the internal guard is
    only held while the per-key entry is looked up or released.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, list] = {}  # key -> [lock, waiters]

    @contextlib.contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]


class _Call:
    __slots__ = ("done", "result", "error")

    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[BaseException] = None


class SingleFlight:
    """
    Collapse concurrent calls for the same key into one execution.

    The first caller runs ``fn``; callers arriving while it is in flight
    wait for it and receive the same result or exception.
    """

    def __init__(self, wait_timeout: Optional[float] = None):
        self._lock = threading.Lock()
        self._calls: Dict[Hashable, _Call] = {}
        self.wait_timeout = wait_timeout

    def do(self, key: Hashable, fn: Callable[[], T]) -> T:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = self._calls[key] = _Call()

        if not leader:
            if not call.done.wait(self.wait_timeout):
                raise ServiceTimeoutException(
                    "Timed out waiting for an in-flight operation"
                )
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
            return call.result
        except BaseException as e:
            call.error = e
            raise
        finally:
            with self._lock:
                del self._calls[key]
            call.done.set()
