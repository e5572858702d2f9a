"""Locks, lock guards and a lock-order deadlock profiler."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterator

__all__ = [
    "LockError",
    "DeadlockError",
    "DeadLockProfiler",
    "RWLock",
    "SpinLock",
    "EventLock",
    "SharedLock",
    "read_guard",
    "write_guard",
]


class LockError(RuntimeError):
    """Raised when a lock is released wrongly."""


class DeadlockError(LockError):
    """Raised when lock acquisition order forms a cycle.

    ``cycle`` holds the edges of the cycle as ``(from_name, to_name)`` pairs.
    """

    def __init__(self, cycle: list[tuple[str, str]]) -> None:
        self.cycle = cycle
        path = ", ".join(f"{a} -> {b}" for a, b in cycle)
        super().__init__(f"DEADLOCK_DETECTED: {path}")


class DeadLockProfiler:
    """Records the order in which named locks are taken and detects cycles."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._local = threading.local()
        self._name_to_id: dict[str, int] = {}
        self._id_to_name: dict[int, str] = {}
        self._history: dict[int, set[int]] = {}
        self._discovered: list[int] = []
        self._discovered_count = 0
        self._finished: list[bool] = []
        self._parent: list[int] = []

    def _stack(self) -> list[int]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    def push_lock(self, name: str) -> None:
        """Record that the current thread is taking the lock ``name``."""
        with self._lock:
            lock_id = self._name_to_id.get(name)
            if lock_id is None:
                lock_id = len(self._name_to_id)
                self._name_to_id[name] = lock_id
                self._id_to_name[lock_id] = name

            stack = self._stack()
            if stack:
                prev_id = stack[-1]
                if lock_id != prev_id:
                    history = self._history.setdefault(prev_id, set())
                    if lock_id not in history:
                        history.add(lock_id)
                        self.check_cycle()
            stack.append(lock_id)

    def pop_lock(self, name: str) -> None:
        """Record that the current thread released the lock ``name``."""
        with self._lock:
            stack = self._stack()
            if not stack:
                raise LockError("MULTIPLE_UNLOCK")
            if self._name_to_id.get(name) != stack[-1]:
                raise LockError("INVALID_UNLOCK_ORDER")
            stack.pop()

    def check_cycle(self) -> None:
        """Raise :class:`DeadlockError` if the recorded lock order has a cycle."""
        with self._lock:
            count = len(self._name_to_id)
            self._discovered = [-1] * count
            self._discovered_count = 0
            self._finished = [False] * count
            self._parent = [-1] * count
            try:
                for lock_id in range(count):
                    self._dfs(lock_id)
            finally:
                self._discovered = []
                self._finished = []
                self._parent = []

    def _dfs(self, here: int) -> None:
        if self._discovered[here] != -1:
            return
        self._discovered[here] = self._discovered_count
        self._discovered_count += 1

        for there in sorted(self._history.get(here, ())):
            if self._discovered[there] == -1:
                self._parent[there] = here
                self._dfs(there)
                continue
            # A forward edge: there was discovered from here.
            if self._discovered[here] < self._discovered[there]:
                continue
            # A back edge to an ancestor whose search is still running.
            if not self._finished[there]:
                names = self._id_to_name
                cycle = [(names[here], names[there])]
                now = here
                while now != there:
                    cycle.append((names[self._parent[now]], names[now]))
                    now = self._parent[now]
                raise DeadlockError(cycle)

        self._finished[here] = True


class RWLock:
    """Reader/writer lock with a re-entrant write side.

    The writing thread may take the write lock again and may also take read
    locks. A thread holding only read locks must not ask for the write lock.
    With a profiler every acquisition is recorded under its name.
    """

    def __init__(self, profiler: DeadLockProfiler | None = None) -> None:
        self._profiler = profiler
        self._cond = threading.Condition(threading.Lock())
        self._owner: int | None = None
        self._write_count = 0
        self._read_count = 0

    def write_lock(self, name: str) -> None:
        if self._profiler is not None:
            self._profiler.push_lock(name)
        me = threading.get_ident()
        with self._cond:
            if self._owner == me:
                self._write_count += 1
                return
            while self._owner is not None or self._read_count:
                self._cond.wait()
            self._owner = me
            self._write_count = 1

    def write_unlock(self, name: str) -> None:
        if self._profiler is not None:
            self._profiler.pop_lock(name)
        with self._cond:
            if self._read_count:
                raise LockError("INVALID_UNLOCK_ORDER")
            if self._owner != threading.get_ident() or self._write_count == 0:
                raise LockError("MULTIPLE_UNLOCK")
            self._write_count -= 1
            if self._write_count == 0:
                self._owner = None
                self._cond.notify_all()

    def read_lock(self, name: str) -> None:
        if self._profiler is not None:
            self._profiler.push_lock(name)
        me = threading.get_ident()
        with self._cond:
            if self._owner != me:
                while self._owner is not None:
                    self._cond.wait()
            self._read_count += 1

    def read_unlock(self, name: str) -> None:
        if self._profiler is not None:
            self._profiler.pop_lock(name)
        with self._cond:
            if self._read_count == 0:
                raise LockError("MULTIPLE_UNLOCK")
            self._read_count -= 1
            if self._read_count == 0:
                self._cond.notify_all()

    @contextmanager
    def write_locked(self, name: str) -> Iterator[RWLock]:
        """Hold the write lock for the duration of a ``with`` block."""
        self.write_lock(name)
        try:
            yield self
        finally:
            self.write_unlock(name)

    @contextmanager
    def read_locked(self, name: str) -> Iterator[RWLock]:
        """Hold a read lock for the duration of a ``with`` block."""
        self.read_lock(name)
        try:
            yield self
        finally:
            self.read_unlock(name)


class SpinLock:
    """Mutual exclusion lock that busy-waits instead of sleeping."""

    def __init__(self) -> None:
        self._flag = threading.Lock()

    def acquire(self) -> bool:
        while not self._flag.acquire(blocking=False):
            time.sleep(0)
        return True

    def release(self) -> None:
        if not self._flag.locked():
            raise LockError("MULTIPLE_UNLOCK")
        self._flag.release()

    def locked(self) -> bool:
        return self._flag.locked()

    def __enter__(self) -> SpinLock:
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()


class EventLock:
    """Lock built on an auto-reset event that starts signalled.

    Acquiring waits for the signal and clears it; releasing sets it again and
    lets exactly one waiter through. Releasing an already signalled lock has
    no further effect.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._signaled = True

    def acquire(self) -> bool:
        with self._cond:
            while not self._signaled:
                self._cond.wait()
            self._signaled = False
        return True

    def release(self) -> None:
        with self._cond:
            self._signaled = True
            self._cond.notify()

    def __enter__(self) -> EventLock:
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()


class SharedLock:
    """Non re-entrant reader/writer lock; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_shared(self) -> bool:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        return True

    def release_shared(self) -> None:
        with self._cond:
            if self._readers == 0:
                raise LockError("MULTIPLE_UNLOCK")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire(self) -> bool:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        return True

    def release(self) -> None:
        with self._cond:
            if not self._writer:
                raise LockError("MULTIPLE_UNLOCK")
            self._writer = False
            self._cond.notify_all()

    @property
    def readers(self) -> int:
        """Number of shared holders right now."""
        with self._cond:
            return self._readers

    def __enter__(self) -> SharedLock:
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()


@contextmanager
def read_guard(lock):
    """Hold ``lock`` in shared mode for a ``with`` block."""
    try:
        acquire, release = lock.acquire_shared, lock.release_shared
    except AttributeError:
        raise TypeError(f"{type(lock).__name__} has no shared mode") from None
    acquire()
    try:
        yield lock
    finally:
        release()


@contextmanager
def write_guard(lock):
    """Hold ``lock`` exclusively for a ``with`` block."""
    try:
        acquire, release = lock.acquire, lock.release
    except AttributeError:
        raise TypeError(f"{type(lock).__name__} is not a lock") from None
    acquire()
    try:
        yield lock
    finally:
        release()