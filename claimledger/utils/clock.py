"""
Injectable clocks.

Everything time-dependent in the engine (vesting math, TTL caches, rate-limit
windows, reconciliation grace periods) reads time from a `Clock` instead of
calling `time.time()` directly, so tests can drive time explicitly.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> float:
        """Current time as POSIX seconds."""
        ...


class SystemClock:
    """Wall clock backed by `time.time()`."""

    def now(self) -> float:
        return time.time()


def utc_from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


__all__ = ["Clock", "SystemClock", "utc_from_timestamp"]
