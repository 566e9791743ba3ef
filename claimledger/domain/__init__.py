"""
Domain package for the claim ledger.

Exports the core data types, the error taxonomy and unit conversions used by
the engine, the store and the HTTP layer. Keep this package focused on data
definitions and validation concerns.
"""

from claimledger.domain.errors import (
    ClaimLedgerError,
    ClaimsDisabledError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RateLimitedError,
    ReconciliationPendingError,
    TransferFailedError,
    ValidationError,
)
from claimledger.domain.models import (
    Allocation,
    AllocationBalance,
    BreakdownEntry,
    ClaimIntent,
    ClaimRecord,
    FeeQuote,
    HistoryEntry,
    HistoryPage,
    LedgerTransaction,
    PlatformConfig,
    Pool,
    PoolState,
    Settlement,
    SettlementReceipt,
    SettlementStatus,
    TransferStatus,
    UnsignedTransfer,
    VestingSchedule,
    VestingSource,
    WalletBalance,
)
from claimledger.domain.units import floor_to_display, to_base_units, to_display

__all__ = [
    "ClaimLedgerError",
    "ClaimsDisabledError",
    "ConflictError",
    "ExternalServiceError",
    "NotFoundError",
    "RateLimitedError",
    "ReconciliationPendingError",
    "TransferFailedError",
    "ValidationError",
    "Allocation",
    "AllocationBalance",
    "BreakdownEntry",
    "ClaimIntent",
    "ClaimRecord",
    "FeeQuote",
    "HistoryEntry",
    "HistoryPage",
    "LedgerTransaction",
    "PlatformConfig",
    "Pool",
    "PoolState",
    "Settlement",
    "SettlementReceipt",
    "SettlementStatus",
    "TransferStatus",
    "UnsignedTransfer",
    "VestingSchedule",
    "VestingSource",
    "WalletBalance",
    "floor_to_display",
    "to_base_units",
    "to_display",
]
