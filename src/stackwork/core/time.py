"""Time abstraction for testing.

Operation ids and receipt timestamps are derived from the clock, so tests
substitute FakeTime to make them deterministic.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime


class Time(ABC):
    """Abstract clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...


class RealTime(Time):
    """Production clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)
