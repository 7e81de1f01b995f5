"""
Tests for the ReconcileQueue
"""

# Standard
from datetime import timedelta
import threading
import time

# Third Party
import pytest

# Local
from rollouts_manager.reconcile import ResourceKey
from rollouts_manager.test_helpers.helpers import library_config
from rollouts_manager.watch_manager import ReconcileQueue
from rollouts_manager.watch_manager.threads import TimerThread

KEY_A = ResourceKey("test", "a")
KEY_B = ResourceKey("test", "b")


def test_add_and_get():
    queue = ReconcileQueue()
    queue.add(KEY_A)
    queue.add(KEY_B)
    assert len(queue) == 2
    assert queue.get(timeout=0) == KEY_A
    assert queue.get(timeout=0) == KEY_B
    assert len(queue) == 0


def test_add_deduplicates_queued_keys():
    queue = ReconcileQueue()
    queue.add(KEY_A)
    queue.add(KEY_A)
    assert len(queue) == 1


def test_in_flight_key_is_not_handed_out_twice():
    queue = ReconcileQueue()
    queue.add(KEY_A)
    assert queue.get(timeout=0) == KEY_A

    # Added again while processing: held back until done
    queue.add(KEY_A)
    queue.add(KEY_A)
    assert queue.get(timeout=0) is None

    queue.done(KEY_A)
    assert len(queue) == 1
    assert queue.get(timeout=0) == KEY_A
    queue.done(KEY_A)
    assert len(queue) == 0


def test_done_without_dirty_does_not_requeue():
    queue = ReconcileQueue()
    queue.add(KEY_A)
    queue.get(timeout=0)
    queue.done(KEY_A)
    assert len(queue) == 0


def test_get_timeout():
    queue = ReconcileQueue()
    start = time.time()
    assert queue.get(timeout=0.1) is None
    assert time.time() - start >= 0.05


@pytest.mark.timeout(5)
def test_get_blocks_until_add():
    queue = ReconcileQueue()
    threading.Timer(0.1, queue.add, args=(KEY_A,)).start()
    assert queue.get(timeout=3) == KEY_A


def test_backoff_doubles_and_caps():
    queue = ReconcileQueue(backoff_base_seconds=1, backoff_max_seconds=5)
    delays = [queue.backoff(KEY_A).total_seconds() for _ in range(5)]
    assert delays == [1, 2, 4, 5, 5]
    assert queue.failures(KEY_A) == 5

    # Backoff is tracked per key
    assert queue.backoff(KEY_B) == timedelta(seconds=1)


def test_backoff_survives_long_failure_streaks():
    queue = ReconcileQueue(backoff_base_seconds=1.0, backoff_max_seconds=300)
    for _ in range(1100):
        delay = queue.backoff(KEY_A)
    assert delay == timedelta(seconds=300)
    assert queue.failures(KEY_A) == 1100


def test_forget_resets_backoff():
    queue = ReconcileQueue(backoff_base_seconds=1, backoff_max_seconds=5)
    queue.backoff(KEY_A)
    queue.backoff(KEY_A)
    queue.forget(KEY_A)
    assert queue.failures(KEY_A) == 0
    assert queue.backoff(KEY_A) == timedelta(seconds=1)


def test_backoff_defaults_from_config():
    with library_config(retry_backoff_base_seconds=3, retry_backoff_max_seconds=4):
        queue = ReconcileQueue()
    assert queue.backoff(KEY_A) == timedelta(seconds=3)
    assert queue.backoff(KEY_A) == timedelta(seconds=4)


@pytest.mark.timeout(5)
def test_shutdown_wakes_consumers():
    queue = ReconcileQueue()
    results = []
    consumer = threading.Thread(target=lambda: results.append(queue.get()))
    consumer.start()
    time.sleep(0.1)
    queue.shutdown()
    consumer.join()
    assert results == [None]
    assert queue.is_shutting_down

    # Keys are dropped once shut down
    queue.add(KEY_A)
    assert len(queue) == 0


def test_add_after_without_delay():
    queue = ReconcileQueue()
    queue.add_after(KEY_A, timedelta(seconds=0))
    assert queue.get(timeout=0) == KEY_A


@pytest.mark.timeout(5)
def test_add_after_uses_timer():
    timer = TimerThread()
    queue = ReconcileQueue(timer_thread=timer)
    queue.add_after(KEY_A, timedelta(seconds=0.2))
    assert len(queue) == 0
    try:
        assert queue.get(timeout=3) == KEY_A
    finally:
        queue.shutdown()
    assert timer.should_stop()
