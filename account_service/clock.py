"""
Clock abstraction.

Use cases read the clock once per attempt and pass the resulting instant and
calendar date down, so a single operation never straddles midnight.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Source of the current time"""

    def __init__(self, business_timezone: str = "UTC"):
        self.business_timezone: tzinfo = ZoneInfo(business_timezone)

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime"""
        ...

    def date_of(self, instant: datetime) -> date:
        """Calendar date of an instant in the business timezone"""
        return instant.astimezone(self.business_timezone).date()

    def today(self) -> date:
        return self.date_of(self.now())


class SystemClock(Clock):
    """Wall-clock time"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Manually controlled clock for tests"""

    def __init__(self, instant: Optional[datetime] = None, business_timezone: str = "UTC"):
        super().__init__(business_timezone)
        self._instant = instant or datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._instant

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a timedelta given as keyword arguments"""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant
