import threading
import time

import pytest

from servercore.locks import (
    DeadLockProfiler,
    DeadlockError,
    EventLock,
    LockError,
    RWLock,
    SharedLock,
    SpinLock,
    read_guard,
    write_guard,
)


def _hammer(lock_ctx, threads=4, iterations=500):
    counter = {"value": 0}

    def work():
        for _ in range(iterations):
            with lock_ctx():
                current = counter["value"]
                time.sleep(0)
                counter["value"] = current + 1

    workers = [threading.Thread(target=work) for _ in range(threads)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    return counter["value"], threads * iterations


def _contended(release, enter):
    """Return (blocked while held, entered after release) for a second thread."""
    entered = threading.Event()

    def other():
        with enter():
            entered.set()

    thread = threading.Thread(target=other)
    thread.start()
    blocked = not entered.wait(0.1)
    release()
    thread.join(2)
    return blocked, entered.is_set()


def test_profiler_detects_reversed_order():
    profiler = DeadLockProfiler()
    profiler.push_lock("A")
    profiler.push_lock("B")
    profiler.pop_lock("B")
    profiler.pop_lock("A")

    profiler.push_lock("B")
    with pytest.raises(DeadlockError) as info:
        profiler.push_lock("A")
    assert info.value.cycle == [("B", "A"), ("A", "B")]
    profiler.pop_lock("B")


def test_profiler_consistent_order_is_fine():
    profiler = DeadLockProfiler()
    for _ in range(2):
        profiler.push_lock("A")
        profiler.push_lock("B")
        profiler.push_lock("C")
        profiler.pop_lock("C")
        profiler.pop_lock("B")
        profiler.pop_lock("A")
    profiler.push_lock("A")
    profiler.push_lock("C")
    profiler.pop_lock("C")
    profiler.pop_lock("A")
    profiler.check_cycle()
    with pytest.raises(LockError, match="MULTIPLE_UNLOCK"):
        profiler.pop_lock("A")


def test_profiler_unlock_order_errors():
    profiler = DeadLockProfiler()
    with pytest.raises(LockError, match="MULTIPLE_UNLOCK"):
        profiler.pop_lock("A")
    profiler.push_lock("A")
    profiler.push_lock("B")
    with pytest.raises(LockError, match="INVALID_UNLOCK_ORDER"):
        profiler.pop_lock("A")


def test_rwlock_with_profiler_detects_deadlock():
    profiler = DeadLockProfiler()
    first = RWLock(profiler)
    second = RWLock(profiler)
    with first.write_locked("A"):
        with second.write_locked("B"):
            pass
    with second.write_locked("B"):
        with pytest.raises(DeadlockError):
            first.write_lock("A")
    with pytest.raises(LockError):
        profiler.pop_lock("B")


def test_rwlock_write_is_reentrant_and_allows_read():
    lock = RWLock()
    lock.write_lock("L")
    lock.write_lock("L")
    lock.read_lock("L")
    with pytest.raises(LockError, match="INVALID_UNLOCK_ORDER"):
        lock.write_unlock("L")
    lock.read_unlock("L")
    lock.write_unlock("L")
    lock.write_unlock("L")
    with pytest.raises(LockError, match="MULTIPLE_UNLOCK"):
        lock.write_unlock("L")


def test_rwlock_read_unlock_without_lock():
    with pytest.raises(LockError, match="MULTIPLE_UNLOCK"):
        RWLock().read_unlock("L")


def test_rwlock_writer_waits_for_reader():
    lock = RWLock()
    lock.read_lock("L")
    result = _contended(lambda: lock.read_unlock("L"), lambda: lock.write_locked("L"))
    assert result == (True, True)
    with pytest.raises(LockError, match="MULTIPLE_UNLOCK"):
        lock.write_unlock("L")


def test_rwlock_mutual_exclusion():
    lock = RWLock()
    total, expected = _hammer(lambda: lock.write_locked("L"))
    assert total == expected


def test_spinlock_state_and_errors():
    lock = SpinLock()
    assert lock.locked() is False
    with lock:
        assert lock.locked() is True
    assert lock.locked() is False
    with pytest.raises(LockError):
        lock.release()


def test_spinlock_mutual_exclusion():
    lock = SpinLock()
    total, expected = _hammer(lambda: lock)
    assert total == expected


def test_event_lock_blocks_second_holder():
    lock = EventLock()
    lock.acquire()
    result = _contended(lock.release, lambda: lock)
    assert result == (True, True)


def test_event_lock_mutual_exclusion():
    lock = EventLock()
    total, expected = _hammer(lambda: lock)
    assert total == expected


def test_shared_lock_multiple_readers():
    lock = SharedLock()
    with read_guard(lock):
        with read_guard(lock):
            assert lock.readers == 2
    assert lock.readers == 0
    with pytest.raises(LockError):
        lock.release_shared()
    with pytest.raises(LockError):
        lock.release()


def test_shared_lock_writer_excludes_readers():
    lock = SharedLock()
    lock.acquire()
    result = _contended(lock.release, lambda: read_guard(lock))
    assert result == (True, True)
    assert lock.readers == 0


def test_shared_lock_mutual_exclusion():
    lock = SharedLock()
    total, expected = _hammer(lambda: write_guard(lock))
    assert total == expected


def test_read_guard_rejects_plain_lock():
    with pytest.raises(TypeError):
        with read_guard(SpinLock()):
            pass


def test_write_guard_rejects_non_lock():
    with pytest.raises(TypeError):
        with write_guard(object()):
            pass


def test_write_guard_releases_on_error():
    lock = SpinLock()
    with pytest.raises(ValueError):
        with write_guard(lock):
            raise ValueError("boom")
    assert lock.locked() is False