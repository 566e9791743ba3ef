"""
Timing and process-resource helpers.

`timed_block` measures wall-clock duration of a block (used by the HTTP request
middleware and the transfer supervisor's confirmation wait), and
`process_snapshot` reports current RSS/CPU for the health endpoint.

Usage:
    from claimledger.utils.timing import timed_block

    with timed_block("complete-claim") as stats:
        await service.complete_claim(...)

    print(stats.duration_seconds)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import psutil


@dataclass
class TimingStats:
    """
    Container for a single timed block.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return round(self.duration_seconds * 1000.0, 2)


@contextlib.contextmanager
def timed_block(label: str) -> Generator[TimingStats, None, None]:
    """
    Context manager measuring wall-clock duration with perf_counter.

    The stats object is populated even when the block raises, so callers can
    log the duration of failed operations from a ``finally`` clause.
    """
    stats = TimingStats(label=label)
    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts


@dataclass
class ProcessSnapshot:
    rss_bytes: Optional[int]
    cpu_percent: Optional[float]


def process_snapshot() -> ProcessSnapshot:
    """Best-effort snapshot of this process' memory and CPU usage."""
    try:
        process = psutil.Process()
        return ProcessSnapshot(
            rss_bytes=process.memory_info().rss,
            cpu_percent=process.cpu_percent(interval=None),
        )
    except psutil.Error:
        return ProcessSnapshot(rss_bytes=None, cpu_percent=None)


__all__ = ["TimingStats", "timed_block", "ProcessSnapshot", "process_snapshot"]
