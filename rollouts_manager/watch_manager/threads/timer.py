"""
The TimerThread runs scheduled actions on one shared thread
"""

# Standard
from datetime import datetime
from heapq import heappop, heappush
from typing import Any, Callable, List, Optional
import threading

# First Party
import alog

# Local
from ..utils import TimerEvent
from .base import ThreadBase

log = alog.use_channel("TMRTHRD")


class TimerThread(ThreadBase):
    """Like threading.Timer, but every scheduled action shares one thread.
    The work queue uses it to delay requeues.
    """

    def __init__(self, name: Optional[str] = None):
        super().__init__(name=name or "timer_thread", daemon=True)

        # Guarded by notify_condition
        self.timer_heap: List[TimerEvent] = []
        self.notify_condition = threading.Condition()

    def run(self):
        while True:
            due_events = self._wait_for_due_events()
            if due_events is None:
                log.debug("Timer stopped with %d pending events", len(self.timer_heap))
                return
            for event in due_events:
                log.debug2("Timer executing %s", event)
                try:
                    event.action(*event.args, **event.kwargs)
                except Exception as err:  # pylint: disable=broad-except
                    log.warning(
                        "Timer action %s failed: %s", event.action, err, exc_info=True
                    )

    def stop_thread(self):
        super().stop_thread()
        with self.notify_condition:
            self.notify_condition.notify_all()

    def put_event(
        self, time: datetime, action: Callable, *args: Any, **kwargs: Any
    ) -> Optional[TimerEvent]:
        """Schedule an action

        Args:
            time:  datetime
                When to run the action
            action:  Callable
                The action to run
            *args:  Any
                Positional args for the action
            **kwargs:  Any
                Keyword args for the action

        Returns:
            event:  Optional[TimerEvent]
                The scheduled event, which can be cancelled. None if the timer
                is stopped.
        """
        if self.should_stop():
            return None
        event = TimerEvent(time=time, action=action, args=args, kwargs=kwargs)
        with self.notify_condition:
            heappush(self.timer_heap, event)
            self.notify_condition.notify_all()
        return event

    ## Implementation Details ##################################################

    def _wait_for_due_events(self) -> Optional[List[TimerEvent]]:
        """Block until at least one live event is due. Returns None on
        shutdown.
        """
        with self.notify_condition:
            while not self.should_stop():
                due_events = self._pop_due_events()
                if due_events:
                    return due_events
                timeout = self._seconds_until_next_event()
                log.debug3("Timer sleeping for %s", timeout)
                self.notify_condition.wait(timeout=timeout)
        return None

    def _pop_due_events(self) -> List[TimerEvent]:
        now = datetime.now()
        due_events = []
        while self.timer_heap and self.timer_heap[0].time <= now:
            event = heappop(self.timer_heap)
            if event.stale:
                log.debug2("Dropping cancelled event %s", event)
                continue
            due_events.append(event)
        return due_events

    def _seconds_until_next_event(self) -> Optional[float]:
        if not self.timer_heap:
            return None
        return max((self.timer_heap[0].time - datetime.now()).total_seconds(), 0)
