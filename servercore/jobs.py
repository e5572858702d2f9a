"""Job queues, timed jobs and worker thread helpers."""

from __future__ import annotations

import heapq
import itertools
import threading
import time
import weakref
from collections import deque
from typing import Any, Callable, Generic, TypeVar

__all__ = [
    "tick_count",
    "Job",
    "LockQueue",
    "GlobalQueue",
    "JobTimer",
    "JobQueue",
    "ThreadManager",
    "TickRunner",
]

T = TypeVar("T")

# Per-thread state: the queue being executed and the tick at which the
# current worker slice ends.
_tls = threading.local()


def _current_queue() -> JobQueue | None:
    return getattr(_tls, "current_queue", None)


def _end_tick() -> int:
    return getattr(_tls, "end_tick", 0)


def tick_count() -> int:
    """Milliseconds from a monotonic clock."""
    return time.monotonic_ns() // 1_000_000


class Job:
    """A callable bound to its arguments, run later."""

    __slots__ = ("_callback", "_args")

    def __init__(self, callback: Callable[..., Any], *args: Any) -> None:
        self._callback = callback
        self._args = args

    def execute(self) -> Any:
        """Run the callback with its arguments."""
        return self._callback(*self._args)


class LockQueue(Generic[T]):
    """Thread-safe FIFO queue."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: deque[T] = deque()

    def push(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def pop(self) -> T | None:
        """Remove and return the oldest item, or ``None`` when empty."""
        with self._lock:
            return self._items.popleft() if self._items else None

    def pop_all(self) -> list[T]:
        """Remove and return every item, oldest first."""
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class GlobalQueue:
    """Job queues waiting for a free worker thread."""

    def __init__(self) -> None:
        self._queues: LockQueue[JobQueue] = LockQueue()

    def push(self, job_queue: JobQueue) -> None:
        self._queues.push(job_queue)

    def pop(self) -> JobQueue | None:
        return self._queues.pop()


class JobTimer:
    """Holds jobs until their tick comes, then hands them to their queue.

    Owners are held weakly: a job whose queue has gone away is dropped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._distributing = threading.Lock()
        self._items: list[tuple[int, int, weakref.ref, Job]] = []
        self._seq = itertools.count()

    def reserve(self, tick_after: int, owner: JobQueue, job: Job) -> None:
        """Schedule ``job`` to be pushed to ``owner`` after ``tick_after`` ms."""
        execute_tick = tick_count() + tick_after
        entry = (execute_tick, next(self._seq), weakref.ref(owner), job)
        with self._lock:
            heapq.heappush(self._items, entry)

    def distribute(self, now: int) -> int:
        """Push every job due at ``now`` to its owner.

        Only one thread distributes at a time; others return at once.
        Returns the number of jobs handed to a live owner.
        """
        if not self._distributing.acquire(blocking=False):
            return 0
        try:
            due = []
            with self._lock:
                while self._items and self._items[0][0] <= now:
                    due.append(heapq.heappop(self._items))

            delivered = 0
            for _, _, owner_ref, job in due:
                owner = owner_ref()
                if owner is not None:
                    owner.push(job)
                    delivered += 1
            return delivered
        finally:
            self._distributing.release()

    def clear(self) -> None:
        """Drop every pending job."""
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class JobQueue:
    """Serialises jobs for one owner; at most one thread runs them at a time.

    The thread that pushes the first job into an idle queue runs it, unless it
    is already running another queue, in which case the queue is handed to the
    global queue for a free worker.
    """

    def __init__(self, global_queue: GlobalQueue | None = None, timer: JobTimer | None = None) -> None:
        self.global_queue = global_queue if global_queue is not None else GlobalQueue()
        self.timer = timer if timer is not None else JobTimer()
        self._jobs: LockQueue[Job] = LockQueue()
        self._count_lock = threading.Lock()
        self._job_count = 0

    def do_async(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue ``callback(*args)`` to run on this queue."""
        self.push(Job(callback, *args))

    def do_timer(self, tick_after: int, callback: Callable[..., Any], *args: Any) -> None:
        """Queue ``callback(*args)`` to run after ``tick_after`` milliseconds."""
        self.timer.reserve(tick_after, self, Job(callback, *args))

    def clear_jobs(self) -> None:
        """Discard the jobs that have not started yet."""
        removed = len(self._jobs.pop_all())
        with self._count_lock:
            self._job_count -= removed

    def push(self, job: Job, push_only: bool = False) -> None:
        """Add ``job``; run the queue now or hand it to the global queue."""
        with self._count_lock:
            prev_count = self._job_count
            self._job_count += 1
        self._jobs.push(job)

        if prev_count == 0:
            if _current_queue() is None and not push_only:
                self.execute()
            else:
                self.global_queue.push(self)

    def _finish(self, count: int) -> int:
        with self._count_lock:
            self._job_count -= count
            return self._job_count

    def execute(self) -> None:
        """Run queued jobs until the queue is empty or the time slice ends."""
        _tls.current_queue = self
        try:
            while True:
                jobs = self._jobs.pop_all()
                try:
                    for job in jobs:
                        job.execute()
                except BaseException:
                    if self._finish(len(jobs)):
                        self.global_queue.push(self)
                    raise

                if self._finish(len(jobs)) == 0:
                    return

                if tick_count() > _end_tick():
                    self.global_queue.push(self)
                    return
        finally:
            _tls.current_queue = None


class ThreadManager:
    """Starts worker threads and drives the global queue and timer."""

    worker_tick = 64
    """Milliseconds a call to :meth:`do_global_queue_work` may spend."""

    def __init__(self, global_queue: GlobalQueue | None = None, timer: JobTimer | None = None) -> None:
        self.global_queue = global_queue if global_queue is not None else GlobalQueue()
        self.timer = timer if timer is not None else JobTimer()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []

    def launch(self, callback: Callable[[], Any]) -> threading.Thread:
        """Run ``callback`` on a new thread."""
        thread = threading.Thread(target=self._run, args=(callback,), daemon=True)
        with self._lock:
            self._threads.append(thread)
        thread.start()
        return thread

    @staticmethod
    def _run(callback: Callable[[], Any]) -> None:
        _tls.current_queue = None
        _tls.end_tick = 0
        callback()

    def join(self) -> None:
        """Wait for every launched thread to finish."""
        with self._lock:
            threads = list(self._threads)
            self._threads.clear()
        for thread in threads:
            thread.join()

    def do_global_queue_work(self) -> None:
        """Execute queues from the global queue for up to ``worker_tick`` ms."""
        previous = _end_tick()
        _tls.end_tick = tick_count() + self.worker_tick
        try:
            while tick_count() <= _tls.end_tick:
                job_queue = self.global_queue.pop()
                if job_queue is None:
                    break
                job_queue.execute()
        finally:
            _tls.end_tick = previous

    def distribute_reserved_jobs(self) -> int:
        """Hand every timed job that is due to its queue."""
        return self.timer.distribute(tick_count())


class TickRunner:
    """Calls an update function at a fixed interval until stopped.

    ``updatable`` is an object with an ``update`` method or a plain callable.
    """

    def __init__(self, updatable: Any, tick_ms: int) -> None:
        if tick_ms < 0:
            raise ValueError("tick_ms must not be negative")
        self._update = getattr(updatable, "update", updatable)
        self._tick_ms = tick_ms
        self._stopped = threading.Event()

    def run(self) -> None:
        """Loop calling the update function, sleeping out the rest of each tick."""
        while not self._stopped.is_set():
            start = time.monotonic()
            self._update()
            elapsed_ms = (time.monotonic() - start) * 1000
            sleep_ms = self._tick_ms - elapsed_ms
            if sleep_ms > 0:
                self._stopped.wait(sleep_ms / 1000)

    def stop(self) -> None:
        """Make :meth:`run` return after the current tick."""
        self._stopped.set()