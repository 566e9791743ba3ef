"""
Vesting Claim Ledger - vesting ledger and claim settlement engine.

Computes how much of each wallet's token allocation has unlocked, splits claim
requests across pools oldest-first, and settles claims in two phases:

- Phase A builds a fee-payment instruction and a per-pool breakdown
- Phase B verifies the paid fee and transfers tokens at most once per fee payment

Settlements are durable and reconciled against the external ledger, so a crash
between transfer and bookkeeping never loses a receipt.
"""

from __future__ import annotations

__version__ = "0.1.0"

from claimledger.config import Settings, get_settings
from claimledger.utils.logging import configure_logging, get_logger

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
]
