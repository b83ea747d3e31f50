"""
Clock Module

Current date/time is injected into the calculators instead of being read
globally, so billing and overdue logic stays deterministic under test.
"""

from abc import ABC, abstractmethod
from datetime import datetime, date, time


class Clock(ABC):
    """Source of the current moment"""

    @abstractmethod
    def now(self) -> datetime:
        """Current local date and time"""
        pass

    def today(self) -> date:
        """Current local calendar date"""
        return self.now().date()


class SystemClock(Clock):
    """Reads the host's local wall clock"""

    def now(self) -> datetime:
        return datetime.now()


class FixedClock(Clock):
    """Clock frozen at a given moment (a bare date means midnight)"""

    def __init__(self, moment):
        self._moment = self._to_datetime(moment)

    def now(self) -> datetime:
        return self._moment

    def advance_to(self, moment) -> None:
        """Move the frozen moment"""
        self._moment = self._to_datetime(moment)

    @staticmethod
    def _to_datetime(moment) -> datetime:
        if isinstance(moment, datetime):
            return moment
        if isinstance(moment, date):
            return datetime.combine(moment, time.min)
        raise ValueError(f"FixedClock needs a date or datetime, got {type(moment).__name__}")
