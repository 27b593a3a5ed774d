"""
Time source for the polling loops.

Both sides only ever wait by sleeping between polls, so handing them a
Clock lets tests run thousands of ticks without touching the wall clock.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime


class Clock(ABC):
    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds, only meaningful as differences."""

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        ...

    def timestamp(self) -> str:
        """Wall-clock time for log lines."""
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class SystemClock(Clock):
    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
