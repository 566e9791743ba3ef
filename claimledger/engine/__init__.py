"""
Engine package for the claim ledger.

Vesting math, claimable aggregation, FIFO distribution, fee handling, the
transfer supervisor, rate limiting and the two-phase settlement protocol.
Everything here talks to I/O only through the protocols in
`claimledger.infrastructure`.
"""

from claimledger.engine.aggregator import ClaimableAggregator
from claimledger.engine.distributor import distribute, same_breakdown
from claimledger.engine.escrow_cache import EscrowVestedCache
from claimledger.engine.fees import FeeQuoter, apportion_fee, build_claim_records, fee_in_base_units
from claimledger.engine.rate_limit import FixedWindowRateLimiter, RequestDeduplicator
from claimledger.engine.reconcile import ReconcileReport, SettlementReconciler
from claimledger.engine.settlement import ClaimSettlementService
from claimledger.engine.supervisor import TransferSupervisor
from claimledger.engine.vesting import (
    VestedReading,
    VestingCalculator,
    escrow_fraction,
    vested_amount,
    vested_fraction,
)

__all__ = [
    "ClaimableAggregator",
    "distribute",
    "same_breakdown",
    "EscrowVestedCache",
    "FeeQuoter",
    "apportion_fee",
    "build_claim_records",
    "fee_in_base_units",
    "FixedWindowRateLimiter",
    "RequestDeduplicator",
    "ReconcileReport",
    "SettlementReconciler",
    "ClaimSettlementService",
    "TransferSupervisor",
    "VestedReading",
    "VestingCalculator",
    "escrow_fraction",
    "vested_amount",
    "vested_fraction",
]
