"""
The ReconcileQueue is a coalescing work queue of RolloutManager keys.

A key is held at most once in the queue and is never handed to two workers
at the same time. A key added while it is being processed is marked dirty
and goes back on the queue when its worker calls done(). Failed keys are
retried with a per-key exponential backoff.
"""

# Standard
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Hashable, Optional, Set
import threading

# First Party
import alog

# Local
from .. import config
from .threads.timer import TimerThread

log = alog.use_channel("WRKQUEUE")

# Larger exponents overflow when converted to float
MAX_BACKOFF_EXPONENT = 30


class ReconcileQueue:
    """Thread safe work queue with deduplication, delayed adds and backoff"""

    def __init__(
        self,
        timer_thread: Optional[TimerThread] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
    ):
        """
        Args:
            timer_thread:  Optional[TimerThread]
                The timer used for delayed adds. One is created and started
                lazily if not given.
            backoff_base_seconds:  Optional[float]
                Delay before the first retry of a failed key. Defaults to
                config.retry_backoff_base_seconds.
            backoff_max_seconds:  Optional[float]
                Upper bound on the retry delay. Defaults to
                config.retry_backoff_max_seconds.
        """
        self.timer_thread = timer_thread
        self.backoff_base = float(
            config.retry_backoff_base_seconds
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self.backoff_max = float(
            config.retry_backoff_max_seconds
            if backoff_max_seconds is None
            else backoff_max_seconds
        )

        self._queue: Deque[Hashable] = deque()
        self._queued: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._dirty: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._shutting_down = False
        self._condition = threading.Condition()

    def __len__(self) -> int:
        with self._condition:
            return len(self._queue)

    ## Producers ###############################################################

    def add(self, key: Hashable):
        """Add a key to the queue. A key that is already queued is not added
        twice and a key that is being processed is requeued once its worker
        finishes.
        """
        with self._condition:
            if self._shutting_down:
                log.debug2("Dropping %s. Queue is shutting down", key)
                return
            if key in self._processing:
                log.debug3("Marking in-flight key %s dirty", key)
                self._dirty.add(key)
                return
            if key in self._queued:
                log.debug3("Key %s already queued", key)
                return
            log.debug2("Queueing %s", key)
            self._queued.add(key)
            self._queue.append(key)
            self._condition.notify()

    def add_after(self, key: Hashable, delay: timedelta):
        """Add a key to the queue once the delay has passed

        Args:
            key:  Hashable
                The key to add
            delay:  timedelta
                How long to wait before adding
        """
        if self.is_shutting_down:
            return
        if delay.total_seconds() <= 0:
            self.add(key)
            return
        log.debug2("Queueing %s in %s", key, delay)
        self._get_timer().put_event(datetime.now() + delay, self.add, key)

    ## Consumers ###############################################################

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is available and mark it as being processed

        Args:
            timeout:  Optional[float]
                Maximum seconds to wait. None waits until a key arrives or the
                queue shuts down.

        Returns:
            key:  Optional[Hashable]
                The next key, or None on timeout or shutdown
        """
        with self._condition:
            available = self._condition.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout
            )
            if not available or self._shutting_down:
                return None
            key = self._queue.popleft()
            self._queued.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: Hashable):
        """Mark a key as processed. If the key was added while it was being
        processed it goes back on the queue.
        """
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                if not self._shutting_down and key not in self._queued:
                    log.debug2("Requeueing dirty key %s", key)
                    self._queued.add(key)
                    self._queue.append(key)
                    self._condition.notify()

    ## Backoff #################################################################

    def backoff(self, key: Hashable) -> timedelta:
        """Record a failure for the key and get the delay before its next
        attempt. The delay doubles with each consecutive failure up to the
        configured maximum.
        """
        with self._condition:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        exponent = min(failures, MAX_BACKOFF_EXPONENT)
        delay = min(self.backoff_base * (2**exponent), self.backoff_max)
        return timedelta(seconds=delay)

    def forget(self, key: Hashable):
        """Reset the failure count of a key"""
        with self._condition:
            self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        with self._condition:
            return self._failures.get(key, 0)

    ## Lifecycle ###############################################################

    def shutdown(self):
        """Stop handing out keys and wake every blocked consumer"""
        with self._condition:
            self._shutting_down = True
            self._condition.notify_all()
        if self.timer_thread is not None:
            self.timer_thread.stop_thread()

    @property
    def is_shutting_down(self) -> bool:
        with self._condition:
            return self._shutting_down

    ## Implementation Details ##################################################

    def _get_timer(self) -> TimerThread:
        with self._condition:
            if self.timer_thread is None:
                self.timer_thread = TimerThread()
            self.timer_thread.start_thread()
            return self.timer_thread
