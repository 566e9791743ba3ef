"""
Hand-written fakes for the claim ledger's collaborators.

The in-memory store honours the same uniqueness rules as `db/init.sql`
(settlement primary key, one receipt per fee transaction and allocation), so
the settlement protocol's idempotency can be exercised without PostgreSQL.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from claimledger.bootstrap import Engine, assemble_engine
from claimledger.config import Settings
from claimledger.domain.errors import ExternalServiceError, NotFoundError, ValidationError
from claimledger.domain.models import (
    Allocation,
    ClaimRecord,
    HistoryEntry,
    LedgerTransaction,
    PlatformConfig,
    Pool,
    PoolState,
    Settlement,
    SettlementStatus,
    TransferStatus,
)
from claimledger.infrastructure.ledger_client import TransferSubmissionError
from claimledger.utils.clock import utc_from_timestamp

T0 = 1_700_000_000.0
FEE_ACCOUNT = "FeeAccount1111"
WALLET = "Wallet1111"


class ManualClock:
    def __init__(self, now: float = T0) -> None:
        self.current = now

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds

    def set(self, now: float) -> None:
        self.current = now


def make_pool(
    pool_id: str = "pool-a",
    total: int = 100,
    start: float = T0,
    cliff: int = 0,
    duration: int = 100,
    state: PoolState = PoolState.ACTIVE,
    escrow_id: Optional[str] = None,
    name: str = "",
) -> Pool:
    return Pool(
        id=pool_id,
        name=name or pool_id,
        total_amount=total,
        start_time=utc_from_timestamp(start),
        cliff_duration_seconds=cliff,
        vesting_duration_seconds=duration,
        state=state,
        escrow_id=escrow_id,
    )


def make_allocation(
    allocation_id: str,
    pool_id: str,
    amount: int,
    wallet: str = WALLET,
    created_at: float = T0,
    is_active: bool = True,
    is_cancelled: bool = False,
) -> Allocation:
    return Allocation(
        id=allocation_id,
        pool_id=pool_id,
        wallet=wallet,
        token_amount=amount,
        is_active=is_active,
        is_cancelled=is_cancelled,
        created_at=utc_from_timestamp(created_at),
    )


class InMemoryLedgerStore:
    def __init__(self) -> None:
        self.pools: Dict[str, Pool] = {}
        self.allocations: List[Allocation] = []
        self.claims: List[ClaimRecord] = []
        self.settlements: Dict[str, Settlement] = {}
        self.config = PlatformConfig()
        self.fail_record = False
        self._ids = itertools.count(1)

    def add_pool(self, pool: Pool) -> Pool:
        self.pools[pool.id] = pool
        return pool

    def add_allocation(self, allocation: Allocation) -> Allocation:
        self.allocations.append(allocation)
        return allocation

    async def list_wallet_allocations(self, wallet: str) -> List[Tuple[Allocation, Pool]]:
        rows = [(a, self.pools[a.pool_id]) for a in self.allocations if a.wallet == wallet]
        return sorted(rows, key=lambda pair: (pair[0].created_at, pair[0].id))

    async def claimed_totals(self, allocation_ids: Sequence[str]) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for record in self.claims:
            if record.allocation_id in allocation_ids:
                totals[record.allocation_id] = totals.get(record.allocation_id, 0) + record.amount_claimed
        return totals

    async def reserved_totals(self, allocation_ids: Sequence[str]) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for settlement in self.settlements.values():
            if settlement.status not in (SettlementStatus.PENDING, SettlementStatus.SUBMITTED):
                continue
            for entry in settlement.breakdown:
                if entry.allocation_id in allocation_ids:
                    totals[entry.allocation_id] = totals.get(entry.allocation_id, 0) + entry.amount
        return totals

    async def find_claims_by_fee_tx(self, fee_tx_id: str) -> List[ClaimRecord]:
        return [r for r in self.claims if r.fee_tx_id == fee_tx_id]

    async def get_settlement(self, fee_tx_id: str) -> Optional[Settlement]:
        return self.settlements.get(fee_tx_id)

    async def begin_settlement(self, settlement: Settlement) -> bool:
        if settlement.fee_tx_id in self.settlements:
            return False
        self.settlements[settlement.fee_tx_id] = settlement
        return True

    def _update(self, fee_tx_id: str, **changes) -> None:
        current = self.settlements[fee_tx_id]
        self.settlements[fee_tx_id] = current.model_copy(update=changes)

    async def mark_settlement_submitted(self, fee_tx_id: str, transfer_tx_id: str) -> None:
        if self.settlements[fee_tx_id].status in (SettlementStatus.PENDING, SettlementStatus.SUBMITTED):
            self._update(
                fee_tx_id,
                status=SettlementStatus.SUBMITTED,
                transfer_tx_id=transfer_tx_id,
                transfer_tx_ids=self.settlements[fee_tx_id].transfer_tx_ids + (transfer_tx_id,),
            )

    async def mark_settlement_failed(self, fee_tx_id: str, error: str) -> None:
        if self.settlements[fee_tx_id].status in (SettlementStatus.PENDING, SettlementStatus.SUBMITTED):
            self._update(fee_tx_id, status=SettlementStatus.FAILED, error=error)

    async def record_settlement(
        self, fee_tx_id: str, transfer_tx_id: str, records: Sequence[ClaimRecord]
    ) -> None:
        if self.fail_record:
            raise RuntimeError("database unavailable")
        existing = {(r.fee_tx_id, r.allocation_id) for r in self.claims}
        for record in records:
            if (record.fee_tx_id, record.allocation_id) in existing:
                continue
            self.claims.append(record.model_copy(update={"id": f"claim-{next(self._ids)}"}))
        self._update(fee_tx_id, status=SettlementStatus.RECORDED, transfer_tx_id=transfer_tx_id, error=None)

    async def list_open_settlements(self, created_before: datetime) -> List[Settlement]:
        return sorted(
            (
                s
                for s in self.settlements.values()
                if s.status in (SettlementStatus.PENDING, SettlementStatus.SUBMITTED)
                and s.created_at < created_before
            ),
            key=lambda s: s.created_at,
        )

    async def claim_history(self, wallet: str, limit: int, offset: int) -> Tuple[List[HistoryEntry], int]:
        by_allocation = {a.id: a for a in self.allocations}
        records = sorted(
            (r for r in self.claims if r.wallet == wallet),
            key=lambda r: (r.claimed_at, r.id),
            reverse=True,
        )
        entries = []
        for record in records[offset : offset + limit]:
            allocation = by_allocation.get(record.allocation_id)
            pool = self.pools.get(allocation.pool_id) if allocation else None
            entries.append(
                HistoryEntry(
                    record=record,
                    pool_id=pool.id if pool else None,
                    pool_name=pool.name if pool else None,
                    pool_state=pool.state if pool else None,
                )
            )
        return entries, len(records)

    async def get_platform_config(self) -> PlatformConfig:
        return self.config

    async def set_claims_enabled(self, enabled: bool) -> None:
        self.config = self.config.model_copy(update={"claims_enabled": enabled})

    async def get_pool(self, pool_id: str) -> Optional[Pool]:
        return self.pools.get(pool_id)

    async def set_pool_state(self, pool_id: str, state: PoolState) -> Pool:
        pool = self.pools.get(pool_id)
        if pool is None:
            raise NotFoundError(f"Pool {pool_id} not found")
        if pool.state is PoolState.CANCELLED and state is not PoolState.CANCELLED:
            raise ValidationError("Cancelled pools cannot change state")
        self.pools[pool_id] = pool.model_copy(update={"state": state})
        return self.pools[pool_id]


class FakeLedger:
    """
    Scripted ledger.

    ``outcomes`` drives successive token submissions:

    - ``"confirm"``: submission succeeds and confirms immediately;
    - ``"reject"``: the signer rejects the submission;
    - ``"fail"``: submission succeeds but the transfer fails on the ledger;
    - ``"hang"``: confirmation never arrives and the status stays pending;
    - ``"late"``: confirmation wait hangs but a status poll reports confirmed;
    - ``"lands_later"``: pending now, confirmed on the next status poll after
      the first one.
    """

    def __init__(self, outcomes: Optional[List[str]] = None) -> None:
        self.transactions: Dict[str, LedgerTransaction] = {}
        self.statuses: Dict[str, TransferStatus] = {}
        self.outcomes = list(outcomes or [])
        self.submissions: List[Tuple[str, int, str]] = []
        self._behaviour: Dict[str, str] = {}
        self._polls: Dict[str, int] = {}
        self._tokens = itertools.count(1)
        self._tx_ids = itertools.count(1)
        self.unavailable = False

    def add_fee_payment(
        self,
        tx_id: str,
        payer: str = WALLET,
        amount: int = 50_000_000,
        fee_account: str = FEE_ACCOUNT,
        error: Optional[str] = None,
    ) -> None:
        self.transactions[tx_id] = LedgerTransaction(
            tx_id=tx_id,
            payer=payer,
            error=error,
            balance_changes={payer: -amount - 5000, fee_account: amount},
        )

    async def get_transaction(self, tx_id: str) -> Optional[LedgerTransaction]:
        if self.unavailable:
            raise ExternalServiceError("ledger down")
        return self.transactions.get(tx_id)

    async def get_transaction_status(self, tx_id: str) -> TransferStatus:
        if self.unavailable:
            raise ExternalServiceError("ledger down")
        self._polls[tx_id] = self._polls.get(tx_id, 0) + 1
        if self._behaviour.get(tx_id) == "lands_later" and self._polls[tx_id] > 1:
            self.statuses[tx_id] = TransferStatus.CONFIRMED
        return self.statuses.get(tx_id, TransferStatus.PENDING)

    async def confirm_transaction(self, tx_id: str) -> TransferStatus:
        if self._behaviour.get(tx_id) in ("hang", "late", "lands_later"):
            await asyncio.Event().wait()
        return self.statuses[tx_id]

    async def get_freshness_token(self) -> str:
        return f"blockhash-{next(self._tokens)}"

    async def submit_token_transfer(self, destination: str, amount: int, freshness_token: str) -> str:
        outcome = self.outcomes.pop(0) if self.outcomes else "confirm"
        if outcome == "reject":
            raise TransferSubmissionError("signer rejected")
        tx_id = f"transfer-{next(self._tx_ids)}"
        self.submissions.append((destination, amount, freshness_token))
        self._behaviour[tx_id] = outcome
        if outcome == "confirm":
            self.statuses[tx_id] = TransferStatus.CONFIRMED
        elif outcome == "fail":
            self.statuses[tx_id] = TransferStatus.FAILED
        elif outcome == "late":
            self.statuses[tx_id] = TransferStatus.CONFIRMED
        else:
            self.statuses[tx_id] = TransferStatus.PENDING
        return tx_id


class FakeEscrow:
    def __init__(self, vested: Optional[Dict[str, int]] = None) -> None:
        self.vested = dict(vested or {})
        self.fail = False
        self.calls = 0

    async def get_vested_amount(self, escrow_id: str) -> int:
        self.calls += 1
        if self.fail:
            raise ExternalServiceError("escrow unreachable", escrow_id=escrow_id)
        return self.vested[escrow_id]

    async def get_withdrawn_amount(self, escrow_id: str) -> int:
        return 0


class FakePriceSource:
    def __init__(self, price: Decimal = Decimal("200")) -> None:
        self.price = price
        self.calls = 0

    async def native_price_usd(self) -> Decimal:
        self.calls += 1
        return self.price


async def no_sleep(_: float) -> None:
    return None


def make_settings(**overrides) -> Settings:
    values = {
        "token_decimals": 2,
        "display_decimals": 2,
        "native_decimals": 9,
        "fee_account": FEE_ACCOUNT,
        "confirmation_timeout_seconds": 0.05,
        "app_env": "test",
    }
    values.update(overrides)
    return Settings(**values)


def make_engine(
    store: InMemoryLedgerStore,
    ledger: FakeLedger,
    clock: ManualClock,
    price_source: Optional[FakePriceSource] = None,
    escrow: Optional[FakeEscrow] = None,
    **overrides,
) -> Engine:
    return assemble_engine(
        make_settings(**overrides),
        store,
        ledger,
        price_source or FakePriceSource(),
        escrow,
        clock=clock,
        sleep=no_sleep,
    )
