"""
StubTap Concurrency Primitives

Small synchronization helpers shared by the stub registry and matcher:
- ReadWriteLock: many concurrent readers, exclusive writers (reader-preferring)
- AtomicCounter: integer cell with compare-and-swap semantics
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """
    Reader-writer lock favouring readers.

    Readers never wait for each other; a writer waits until no reader holds
    the lock. Intended for read-mostly structures where mutation is rare.

    Example:
        lock = ReadWriteLock()
        with lock.read():
            ...  # concurrent lookups
        with lock.write():
            ...  # exclusive mutation
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        """Hold the lock in shared mode."""
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        """Hold the lock in exclusive mode."""
        with self._cond:
            while self._writer or self._readers > 0:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class AtomicCounter:
    """
    Integer cell updated through compare-and-swap.

    ``compare_and_swap`` succeeds only if the current value still equals
    ``expected``; callers loop on failure.
    """

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def compare_and_swap(self, expected: int, new: int) -> bool:
        """
        Atomically replace the value if it equals ``expected``.

        Args:
            expected: Value the caller last observed
            new: Replacement value

        Returns:
            True if the swap happened
        """
        with self._lock:
            if self._value != expected:
                return False
            self._value = new
            return True

    def set(self, value: int):
        with self._lock:
            self._value = value

    def __repr__(self) -> str:
        return f"AtomicCounter({self._value})"
