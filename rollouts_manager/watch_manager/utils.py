"""
Shared types and helpers for the watch manager
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
import re

## Durations ###################################################################

_DURATION_UNITS = {"hr": "hours", "h": "hours", "m": "minutes", "s": "seconds"}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(hr|h|m|s)")


def parse_time_delta(time_str: str) -> Optional[timedelta]:
    """Parse a duration such as "1hr", "5m", "10s" or "1m30s"

    Args:
        time_str:  str
            The duration string

    Returns:
        result:  Optional[timedelta]
            The parsed duration, None if the string is not a duration
    """
    time_str = (time_str or "").strip()
    parts = _DURATION_PART.findall(time_str)
    if not parts or "".join(num + unit for num, unit in parts) != time_str:
        return None
    durations = {}
    for number, unit in parts:
        name = _DURATION_UNITS[unit]
        durations[name] = durations.get(name, 0) + float(number)
    return timedelta(**durations)


## Types #######################################################################


@dataclass(order=True)
class TimerEvent:
    """A scheduled action. Events order by time only so they can live on a
    heap.
    """

    time: datetime
    action: Callable = field(compare=False)
    args: tuple = field(default_factory=tuple, compare=False)
    kwargs: dict = field(default_factory=dict, compare=False)
    stale: bool = field(default=False, compare=False)

    def cancel(self):
        """Mark the event so the timer drops it instead of running it"""
        self.stale = True
