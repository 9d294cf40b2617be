"""Time source used for status timestamps, poll gating and probe backoff.

Injected everywhere wall-clock time matters so tests can move time forward
without sleeping.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        ...

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        ...


class RealClock(Clock):
    def now(self) -> datetime:
        return utc_now()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)
