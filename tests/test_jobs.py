import gc

import pytest

from servercore.jobs import (
    GlobalQueue,
    Job,
    JobQueue,
    JobTimer,
    LockQueue,
    ThreadManager,
    TickRunner,
    tick_count,
)


def test_tick_count_is_monotonic():
    first = tick_count()
    second = tick_count()
    assert second >= first


def test_job_executes_with_args():
    seen = []
    Job(seen.append, "x").execute()
    assert seen == ["x"]


def test_lock_queue_is_fifo():
    queue = LockQueue()
    for item in ("a", "b", "c"):
        queue.push(item)
    assert len(queue) == 3
    assert queue.pop() == "a"
    assert queue.pop() == "b"
    assert len(queue) == 1


def test_lock_queue_pop_empty_returns_none():
    assert LockQueue().pop() is None


def test_lock_queue_pop_all_and_clear():
    queue = LockQueue()
    queue.push(1)
    queue.push(2)
    assert queue.pop_all() == [1, 2]
    assert len(queue) == 0
    queue.push(3)
    queue.clear()
    assert queue.pop() is None


def test_global_queue_order():
    global_queue = GlobalQueue()
    first, second = JobQueue(global_queue), JobQueue(global_queue)
    global_queue.push(first)
    global_queue.push(second)
    assert global_queue.pop() is first
    assert global_queue.pop() is second
    assert global_queue.pop() is None


def test_do_async_runs_immediately_on_idle_queue():
    global_queue = GlobalQueue()
    queue = JobQueue(global_queue)
    seen = []
    queue.do_async(seen.append, "now")
    assert seen == ["now"]
    assert global_queue.pop() is None


def test_nested_job_on_same_queue_is_handed_off():
    global_queue = GlobalQueue()
    queue = JobQueue(global_queue)
    seen = []

    def outer():
        seen.append("outer")
        queue.do_async(seen.append, "inner")

    queue.do_async(outer)
    assert seen == ["outer"]
    assert global_queue.pop() is queue
    queue.execute()
    assert seen == ["outer", "inner"]


def test_job_for_other_queue_goes_to_global_queue():
    global_queue = GlobalQueue()
    a, b = JobQueue(global_queue), JobQueue(global_queue)
    seen = []
    a.do_async(lambda: b.do_async(seen.append, "b"))
    assert seen == []
    assert global_queue.pop() is b
    b.execute()
    assert seen == ["b"]


def test_push_only_defers_execution():
    global_queue = GlobalQueue()
    queue = JobQueue(global_queue)
    seen = []
    queue.push(Job(seen.append, 1), push_only=True)
    assert seen == []
    assert global_queue.pop() is queue
    queue.execute()
    assert seen == [1]


def test_clear_jobs_discards_pending_and_keeps_queue_usable():
    queue = JobQueue(GlobalQueue())
    seen = []
    queue.push(Job(seen.append, "dropped"), push_only=True)
    queue.push(Job(seen.append, "dropped"), push_only=True)
    queue.clear_jobs()
    queue.do_async(seen.append, "kept")
    assert seen == ["kept"]


def test_exception_in_job_propagates_and_queue_recovers():
    queue = JobQueue(GlobalQueue())

    def boom():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        queue.do_async(boom)
    seen = []
    queue.do_async(seen.append, "after")
    assert seen == ["after"]


def test_timer_distributes_due_jobs():
    timer = JobTimer()
    queue = JobQueue(GlobalQueue(), timer)
    seen = []
    queue.do_timer(0, seen.append, "due")
    assert len(timer) == 1
    assert timer.distribute(tick_count()) == 1
    assert seen == ["due"]
    assert len(timer) == 0


def test_timer_keeps_future_jobs_until_cleared():
    timer = JobTimer()
    queue = JobQueue(GlobalQueue(), timer)
    seen = []
    queue.do_timer(60_000, seen.append, "later")
    assert timer.distribute(tick_count()) == 0
    assert seen == []
    assert len(timer) == 1
    timer.clear()
    assert len(timer) == 0


def test_timer_delivers_in_tick_order():
    timer = JobTimer()
    queue = JobQueue(GlobalQueue(), timer)
    seen = []
    queue.do_timer(30_000, seen.append, "long")
    queue.do_timer(10_000, seen.append, "short")
    timer.distribute(tick_count() + 60_000)
    assert seen == ["short", "long"]


def test_timer_drops_jobs_of_dead_owner():
    timer = JobTimer()
    seen = []
    queue = JobQueue(GlobalQueue(), timer)
    timer.reserve(0, queue, Job(seen.append, 1))
    del queue
    gc.collect()
    assert timer.distribute(tick_count()) == 0
    assert seen == []
    assert len(timer) == 0


def test_thread_manager_launch_and_join():
    manager = ThreadManager()
    collected = LockQueue()

    for n in range(3):
        manager.launch(lambda n=n: collected.push(n))
    manager.join()
    assert sorted(collected.pop_all()) == [0, 1, 2]
    assert len(collected) == 0


def test_do_global_queue_work_runs_waiting_queues():
    global_queue = GlobalQueue()
    manager = ThreadManager(global_queue)
    queue = JobQueue(global_queue)
    seen = []
    queue.push(Job(seen.append, "work"), push_only=True)
    manager.do_global_queue_work()
    assert seen == ["work"]
    assert global_queue.pop() is None


def test_distribute_reserved_jobs():
    global_queue, timer = GlobalQueue(), JobTimer()
    manager = ThreadManager(global_queue, timer)
    queue = JobQueue(global_queue, timer)
    seen = []
    queue.do_timer(0, seen.append, "timed")
    manager.distribute_reserved_jobs()
    assert seen == ["timed"]


def test_concurrent_pushes_all_run():
    global_queue = GlobalQueue()
    manager = ThreadManager(global_queue)
    queue = JobQueue(global_queue)
    collected = LockQueue()
    per_thread = 200
    threads = 4

    def producer():
        for i in range(per_thread):
            queue.do_async(collected.push, i)

    for _ in range(threads):
        manager.launch(producer)
    manager.join()
    for _ in range(1000):
        if len(collected) == per_thread * threads:
            break
        manager.do_global_queue_work()
    assert len(collected) == per_thread * threads
    assert sorted(collected.pop_all()) == sorted(list(range(per_thread)) * threads)


class _Counter:
    def __init__(self):
        self.calls = 0
        self.runner = None

    def update(self):
        self.calls += 1
        if self.calls == 3:
            self.runner.stop()


def test_tick_runner_runs_until_stopped():
    counter = _Counter()
    runner = TickRunner(counter, 1)
    counter.runner = runner
    runner.run()
    assert counter.calls == 3


def test_tick_runner_stopped_before_run_does_nothing():
    counter = _Counter()
    runner = TickRunner(counter, 1)
    runner.stop()
    runner.run()
    assert counter.calls == 0


def test_tick_runner_accepts_callable():
    calls = []
    runner = TickRunner(lambda: (calls.append(1), runner.stop()), 0)
    runner.run()
    assert calls == [1]


def test_tick_runner_rejects_negative_tick():
    with pytest.raises(ValueError):
        TickRunner(lambda: None, -1)