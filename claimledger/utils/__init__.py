"""
Utilities package for the claim ledger.

Exports shared helpers for logging, timing and clocks.
Keep this package lightweight and free of domain-specific logic.
"""

from claimledger.utils.clock import Clock, SystemClock, utc_from_timestamp
from claimledger.utils.logging import configure_logging, get_logger
from claimledger.utils.timing import TimingStats, process_snapshot, timed_block

__all__ = [
    "Clock",
    "SystemClock",
    "utc_from_timestamp",
    "configure_logging",
    "get_logger",
    "TimingStats",
    "process_snapshot",
    "timed_block",
]
