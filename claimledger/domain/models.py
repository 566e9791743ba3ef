"""
Domain models for the claim ledger.

Pools, allocations and claim receipts mirror the rows in `db/init.sql`; the
remaining types are the values passed between the aggregator, the distributor
and the two settlement phases. Every amount is an integer in base units.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field

_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}


class PoolState(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class VestingSource(str, Enum):
    SCHEDULE = "schedule"
    ESCROW = "escrow"
    ESCROW_FALLBACK = "escrow_fallback"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    RECORDED = "recorded"
    FAILED = "failed"


class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class VestingSchedule(BaseModel):
    """Absolute schedule instants as POSIX seconds."""

    start: float
    cliff: float
    end: float

    model_config = _FROZEN


class Pool(BaseModel):
    """
    Representation of a single row in the `pool` table.
    """

    id: str = Field(..., description="Pool identifier.")
    name: str = Field("", description="Human-readable campaign name.")
    total_amount: int = Field(..., gt=0, description="Total pool size in base units.")
    start_time: datetime = Field(..., description="Vesting start instant.")
    cliff_duration_seconds: int = Field(0, ge=0)
    vesting_duration_seconds: int = Field(..., gt=0)
    state: PoolState = Field(PoolState.ACTIVE)
    escrow_id: Optional[str] = Field(None, description="Bound on-chain escrow, if any.")

    model_config = _FROZEN

    @property
    def schedule(self) -> VestingSchedule:
        start = self.start_time.timestamp()
        return VestingSchedule(
            start=start,
            cliff=start + self.cliff_duration_seconds,
            end=start + self.vesting_duration_seconds,
        )


class Allocation(BaseModel):
    """
    Representation of a single row in the `allocation` table.
    """

    id: str
    pool_id: str
    wallet: str
    token_amount: int = Field(..., gt=0, description="Allocation size in base units.")
    share_percentage: Optional[Decimal] = None
    is_active: bool = True
    is_cancelled: bool = False
    created_at: datetime

    model_config = _FROZEN


class ClaimRecord(BaseModel):
    """
    Immutable receipt for one allocation touched by one settlement.
    """

    id: Optional[str] = None
    wallet: str
    allocation_id: str
    amount_claimed: int = Field(..., gt=0)
    fee_paid: int = Field(0, ge=0, description="Share of the fee in native base units.")
    transfer_tx_id: str
    fee_tx_id: str
    claimed_at: datetime

    model_config = _FROZEN


class BreakdownEntry(BaseModel):
    pool_id: str
    allocation_id: str
    amount: int = Field(..., gt=0)
    pool_name: Optional[str] = None

    model_config = _FROZEN

    def key(self) -> Tuple[str, str, int]:
        return (self.pool_id, self.allocation_id, self.amount)


class AllocationBalance(BaseModel):
    """Vesting position of one allocation at one instant."""

    allocation: Allocation
    pool: Pool
    vested: int
    claimed: int
    reserved: int = Field(0, description="Held by settlements still in flight.")
    claimable: int
    vested_fraction: float
    source: VestingSource
    claim_eligible: bool

    model_config = _FROZEN

    @property
    def locked(self) -> int:
        return max(0, self.allocation.token_amount - self.vested)


class WalletBalance(BaseModel):
    wallet: str
    as_of: float
    allocations: Tuple[AllocationBalance, ...] = ()
    total_available: int = Field(0, description="Floored claimable total across eligible allocations.")
    raw_available: int = 0
    total_claimed: int = 0
    total_locked: int = 0

    model_config = _FROZEN

    @property
    def eligible(self) -> Tuple[AllocationBalance, ...]:
        return tuple(b for b in self.allocations if b.claim_eligible)


class FeeQuote(BaseModel):
    fee_usd: Decimal
    native_price_usd: Decimal
    amount: int = Field(..., ge=0, description="Fee in native base units.")
    fee_account: str
    quoted_at: float

    model_config = _FROZEN


class UnsignedTransfer(BaseModel):
    """A fee-payment instruction for the wallet to sign and submit."""

    source: str
    destination: str
    amount: int
    asset: str = "native"
    freshness_token: str

    model_config = _FROZEN


class ClaimIntent(BaseModel):
    wallet: str
    amount: int
    total_available: int
    breakdown: Tuple[BreakdownEntry, ...]
    fee_quote: FeeQuote
    fee_transfer: UnsignedTransfer

    model_config = _FROZEN


class Settlement(BaseModel):
    """Durable progress marker for one Phase-B settlement, keyed by fee transaction."""

    fee_tx_id: str
    wallet: str
    amount: int
    fee_paid: int = 0
    breakdown: Tuple[BreakdownEntry, ...]
    status: SettlementStatus = SettlementStatus.PENDING
    transfer_tx_id: Optional[str] = None
    transfer_tx_ids: Tuple[str, ...] = Field((), description="Every submitted transfer, oldest first.")
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = _FROZEN

    @property
    def submitted_transfers(self) -> Tuple[str, ...]:
        if self.transfer_tx_ids:
            return self.transfer_tx_ids
        return (self.transfer_tx_id,) if self.transfer_tx_id else ()


class SettlementReceipt(BaseModel):
    wallet: str
    fee_tx_id: str
    transfer_tx_id: str
    amount: int
    fee_paid: int
    breakdown: Tuple[BreakdownEntry, ...]

    model_config = _FROZEN


class LedgerTransaction(BaseModel):
    """The parts of an external ledger transaction the engine inspects."""

    tx_id: str
    payer: Optional[str] = None
    error: Optional[str] = None
    balance_changes: Dict[str, int] = Field(default_factory=dict)

    model_config = _FROZEN

    @property
    def succeeded(self) -> bool:
        return self.error is None


class PlatformConfig(BaseModel):
    claims_enabled: bool = True
    claim_fee_usd: Decimal = Decimal("10.00")

    model_config = _FROZEN


class HistoryEntry(BaseModel):
    record: ClaimRecord
    pool_id: Optional[str] = None
    pool_name: Optional[str] = None
    pool_state: Optional[PoolState] = None

    model_config = _FROZEN


class HistoryPage(BaseModel):
    items: Tuple[HistoryEntry, ...]
    total: int
    page: int
    limit: int

    model_config = _FROZEN


__all__ = [
    "PoolState",
    "VestingSource",
    "SettlementStatus",
    "TransferStatus",
    "VestingSchedule",
    "Pool",
    "Allocation",
    "ClaimRecord",
    "BreakdownEntry",
    "AllocationBalance",
    "WalletBalance",
    "FeeQuote",
    "UnsignedTransfer",
    "ClaimIntent",
    "Settlement",
    "SettlementReceipt",
    "LedgerTransaction",
    "PlatformConfig",
    "HistoryEntry",
    "HistoryPage",
]
