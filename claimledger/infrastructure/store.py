"""
Relational ledger store.

`LedgerStore` is the contract the engine depends on; `PostgresLedgerStore`
implements it on a psycopg async connection pool. Mutual exclusion between
concurrent settlements is delegated to the schema's uniqueness constraints
(see `db/init.sql`), never to in-process locks.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from claimledger.domain.errors import NotFoundError, ValidationError
from claimledger.domain.models import (
    Allocation,
    BreakdownEntry,
    ClaimRecord,
    HistoryEntry,
    PlatformConfig,
    Pool,
    PoolState,
    Settlement,
    SettlementStatus,
)
from claimledger.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class LedgerStore(Protocol):
    async def list_wallet_allocations(self, wallet: str) -> List[Tuple[Allocation, Pool]]:
        """Allocations of ``wallet`` with their pools, oldest allocation first."""
        ...

    async def claimed_totals(self, allocation_ids: Sequence[str]) -> Dict[str, int]:
        ...

    async def reserved_totals(self, allocation_ids: Sequence[str]) -> Dict[str, int]:
        """Per-allocation amounts held by pending or submitted settlements."""
        ...

    async def find_claims_by_fee_tx(self, fee_tx_id: str) -> List[ClaimRecord]:
        ...

    async def get_settlement(self, fee_tx_id: str) -> Optional[Settlement]:
        ...

    async def begin_settlement(self, settlement: Settlement) -> bool:
        """Insert ``settlement``; False when its fee transaction is already claimed."""
        ...

    async def mark_settlement_submitted(self, fee_tx_id: str, transfer_tx_id: str) -> None:
        """Append ``transfer_tx_id`` to the settlement's submitted transfers."""
        ...

    async def mark_settlement_failed(self, fee_tx_id: str, error: str) -> None:
        ...

    async def record_settlement(
        self, fee_tx_id: str, transfer_tx_id: str, records: Sequence[ClaimRecord]
    ) -> None:
        """Write receipts and close the settlement atomically."""
        ...

    async def list_open_settlements(self, created_before: datetime) -> List[Settlement]:
        ...

    async def claim_history(
        self, wallet: str, limit: int, offset: int
    ) -> Tuple[List[HistoryEntry], int]:
        ...

    async def get_platform_config(self) -> PlatformConfig:
        ...

    async def set_claims_enabled(self, enabled: bool) -> None:
        ...

    async def get_pool(self, pool_id: str) -> Optional[Pool]:
        ...

    async def set_pool_state(self, pool_id: str, state: PoolState) -> Pool:
        ...


def _int(value: Any) -> int:
    return int(value) if value is not None else 0


def _pool_from_row(row: Dict[str, Any], prefix: str = "") -> Pool:
    return Pool(
        id=row[f"{prefix}id"],
        name=row[f"{prefix}name"],
        total_amount=_int(row[f"{prefix}total_amount"]),
        start_time=row[f"{prefix}start_time"],
        cliff_duration_seconds=_int(row[f"{prefix}cliff_duration"]),
        vesting_duration_seconds=_int(row[f"{prefix}vesting_duration"]),
        state=PoolState(row[f"{prefix}state"]),
        escrow_id=row[f"{prefix}escrow_id"],
    )


def _allocation_from_row(row: Dict[str, Any]) -> Allocation:
    return Allocation(
        id=row["id"],
        pool_id=row["pool_id"],
        wallet=row["wallet"],
        token_amount=_int(row["token_amount"]),
        share_percentage=row["share_percentage"],
        is_active=row["is_active"],
        is_cancelled=row["is_cancelled"],
        created_at=row["created_at"],
    )


def _claim_from_row(row: Dict[str, Any]) -> ClaimRecord:
    return ClaimRecord(
        id=row["id"],
        wallet=row["wallet"],
        allocation_id=row["allocation_id"],
        amount_claimed=_int(row["amount_claimed"]),
        fee_paid=_int(row["fee_paid"]),
        transfer_tx_id=row["transfer_tx_id"],
        fee_tx_id=row["fee_tx_id"],
        claimed_at=row["claimed_at"],
    )


def _settlement_from_row(row: Dict[str, Any]) -> Settlement:
    breakdown = row["breakdown"]
    if isinstance(breakdown, str):
        breakdown = json.loads(breakdown)
    return Settlement(
        fee_tx_id=row["fee_tx_id"],
        wallet=row["wallet"],
        amount=_int(row["amount"]),
        fee_paid=_int(row["fee_paid"]),
        breakdown=tuple(BreakdownEntry.model_validate(item) for item in breakdown),
        status=SettlementStatus(row["status"]),
        transfer_tx_id=row["transfer_tx_id"],
        transfer_tx_ids=tuple(row.get("transfer_tx_ids") or ()),
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


_POOL_COLUMNS = (
    "p.id AS p_id, p.name AS p_name, p.total_amount AS p_total_amount, "
    "p.start_time AS p_start_time, p.cliff_duration AS p_cliff_duration, "
    "p.vesting_duration AS p_vesting_duration, p.state AS p_state, p.escrow_id AS p_escrow_id"
)

_INSERT_CLAIM_SQL = """
    INSERT INTO public.claim_record
        (wallet, allocation_id, amount_claimed, fee_paid, transfer_tx_id, fee_tx_id, claimed_at)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (fee_tx_id, allocation_id) DO NOTHING
"""


class PostgresLedgerStore:
    """
    `LedgerStore` on a psycopg `AsyncConnectionPool`.

    Each method borrows one pooled connection; the pool commits on clean exit
    from the connection block and rolls back when it raises.
    """

    def __init__(self, pool: AsyncConnectionPool, default_fee_usd: Decimal = Decimal("10.00")) -> None:
        self._pool = pool
        self._default_fee_usd = default_fee_usd

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(sql, params)
                return await cur.fetchall()

    async def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(sql, params)
                return await cur.fetchone()

    async def list_wallet_allocations(self, wallet: str) -> List[Tuple[Allocation, Pool]]:
        rows = await self._fetch_all(
            f"""
            SELECT a.*, {_POOL_COLUMNS}
            FROM public.allocation a
            JOIN public.pool p ON p.id = a.pool_id
            WHERE a.wallet = %s
            ORDER BY a.created_at ASC, a.id ASC
            """,
            (wallet,),
        )
        return [(_allocation_from_row(row), _pool_from_row(row, prefix="p_")) for row in rows]

    async def claimed_totals(self, allocation_ids: Sequence[str]) -> Dict[str, int]:
        if not allocation_ids:
            return {}
        rows = await self._fetch_all(
            """
            SELECT allocation_id, SUM(amount_claimed) AS total
            FROM public.claim_record
            WHERE allocation_id = ANY(%s)
            GROUP BY allocation_id
            """,
            (list(allocation_ids),),
        )
        return {row["allocation_id"]: _int(row["total"]) for row in rows}

    async def reserved_totals(self, allocation_ids: Sequence[str]) -> Dict[str, int]:
        if not allocation_ids:
            return {}
        rows = await self._fetch_all(
            """
            SELECT e->>'allocation_id' AS allocation_id, SUM((e->>'amount')::numeric) AS total
            FROM public.settlement s, jsonb_array_elements(s.breakdown) AS e
            WHERE s.status IN ('pending', 'submitted')
              AND e->>'allocation_id' = ANY(%s)
            GROUP BY e->>'allocation_id'
            """,
            (list(allocation_ids),),
        )
        return {row["allocation_id"]: _int(row["total"]) for row in rows}

    async def find_claims_by_fee_tx(self, fee_tx_id: str) -> List[ClaimRecord]:
        rows = await self._fetch_all(
            "SELECT * FROM public.claim_record WHERE fee_tx_id = %s ORDER BY claimed_at, id",
            (fee_tx_id,),
        )
        return [_claim_from_row(row) for row in rows]

    async def get_settlement(self, fee_tx_id: str) -> Optional[Settlement]:
        row = await self._fetch_one(
            "SELECT * FROM public.settlement WHERE fee_tx_id = %s", (fee_tx_id,)
        )
        return _settlement_from_row(row) if row else None

    async def begin_settlement(self, settlement: Settlement) -> bool:
        breakdown = [entry.model_dump(mode="json") for entry in settlement.breakdown]
        row = await self._fetch_one(
            """
            INSERT INTO public.settlement
                (fee_tx_id, wallet, amount, fee_paid, breakdown, status, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (fee_tx_id) DO NOTHING
            RETURNING fee_tx_id
            """,
            (
                settlement.fee_tx_id,
                settlement.wallet,
                settlement.amount,
                settlement.fee_paid,
                Jsonb(breakdown),
                settlement.status.value,
                settlement.created_at,
                settlement.updated_at,
            ),
        )
        return row is not None

    async def mark_settlement_submitted(self, fee_tx_id: str, transfer_tx_id: str) -> None:
        await self._fetch_all(
            """
            UPDATE public.settlement
            SET status = 'submitted', transfer_tx_id = %s,
                transfer_tx_ids = array_append(transfer_tx_ids, %s), updated_at = NOW()
            WHERE fee_tx_id = %s AND status IN ('pending', 'submitted')
            RETURNING fee_tx_id
            """,
            (transfer_tx_id, transfer_tx_id, fee_tx_id),
        )

    async def mark_settlement_failed(self, fee_tx_id: str, error: str) -> None:
        await self._fetch_all(
            """
            UPDATE public.settlement
            SET status = 'failed', error = %s, updated_at = NOW()
            WHERE fee_tx_id = %s AND status IN ('pending', 'submitted')
            RETURNING fee_tx_id
            """,
            (error, fee_tx_id),
        )

    async def record_settlement(
        self, fee_tx_id: str, transfer_tx_id: str, records: Sequence[ClaimRecord]
    ) -> None:
        async with self._pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.executemany(
                        _INSERT_CLAIM_SQL,
                        [
                            (
                                r.wallet,
                                r.allocation_id,
                                r.amount_claimed,
                                r.fee_paid,
                                r.transfer_tx_id,
                                r.fee_tx_id,
                                r.claimed_at,
                            )
                            for r in records
                        ],
                    )
                    await cur.execute(
                        """
                        UPDATE public.settlement
                        SET status = 'recorded', transfer_tx_id = %s, error = NULL, updated_at = NOW()
                        WHERE fee_tx_id = %s
                        """,
                        (transfer_tx_id, fee_tx_id),
                    )

    async def list_open_settlements(self, created_before: datetime) -> List[Settlement]:
        rows = await self._fetch_all(
            """
            SELECT * FROM public.settlement
            WHERE status IN ('pending', 'submitted') AND created_at < %s
            ORDER BY created_at ASC
            """,
            (created_before,),
        )
        return [_settlement_from_row(row) for row in rows]

    async def claim_history(
        self, wallet: str, limit: int, offset: int
    ) -> Tuple[List[HistoryEntry], int]:
        rows = await self._fetch_all(
            """
            SELECT c.*, p.id AS pool_id, p.name AS pool_name, p.state AS pool_state,
                   COUNT(*) OVER () AS total_count
            FROM public.claim_record c
            LEFT JOIN public.allocation a ON a.id = c.allocation_id
            LEFT JOIN public.pool p ON p.id = a.pool_id
            WHERE c.wallet = %s
            ORDER BY c.claimed_at DESC, c.id DESC
            LIMIT %s OFFSET %s
            """,
            (wallet, limit, offset),
        )
        if rows:
            total = _int(rows[0]["total_count"])
        else:
            count_row = await self._fetch_one(
                "SELECT COUNT(*) AS total FROM public.claim_record WHERE wallet = %s", (wallet,)
            )
            total = _int(count_row["total"]) if count_row else 0
        entries = [
            HistoryEntry(
                record=_claim_from_row(row),
                pool_id=row["pool_id"],
                pool_name=row["pool_name"],
                pool_state=PoolState(row["pool_state"]) if row["pool_state"] else None,
            )
            for row in rows
        ]
        return entries, total

    async def get_platform_config(self) -> PlatformConfig:
        row = await self._fetch_one(
            "SELECT claims_enabled, claim_fee_usd FROM public.platform_config WHERE id = 1"
        )
        if row is None:
            return PlatformConfig(claim_fee_usd=self._default_fee_usd)
        return PlatformConfig(
            claims_enabled=row["claims_enabled"],
            claim_fee_usd=Decimal(row["claim_fee_usd"]),
        )

    async def set_claims_enabled(self, enabled: bool) -> None:
        await self._fetch_all(
            """
            INSERT INTO public.platform_config (id, claims_enabled, claim_fee_usd)
            VALUES (1, %s, %s)
            ON CONFLICT (id) DO UPDATE SET claims_enabled = EXCLUDED.claims_enabled, updated_at = NOW()
            RETURNING id
            """,
            (enabled, self._default_fee_usd),
        )

    async def get_pool(self, pool_id: str) -> Optional[Pool]:
        row = await self._fetch_one("SELECT * FROM public.pool WHERE id = %s", (pool_id,))
        return _pool_from_row(row) if row else None

    async def set_pool_state(self, pool_id: str, state: PoolState) -> Pool:
        current = await self.get_pool(pool_id)
        if current is None:
            raise NotFoundError(f"Pool {pool_id} not found", pool_id=pool_id)
        if current.state is PoolState.CANCELLED and state is not PoolState.CANCELLED:
            raise ValidationError("Cancelled pools cannot change state", pool_id=pool_id)
        row = await self._fetch_one(
            "UPDATE public.pool SET state = %s WHERE id = %s AND state <> 'cancelled' RETURNING *",
            (state.value, pool_id),
        )
        log.info("Pool state changed", extra={"pool_id": pool_id, "state": state.value})
        return _pool_from_row(row) if row else current

    async def add_pool(self, pool: Pool) -> None:
        await self._fetch_all(
            """
            INSERT INTO public.pool
                (id, name, total_amount, start_time, cliff_duration, vesting_duration, state, escrow_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                pool.id,
                pool.name,
                pool.total_amount,
                pool.start_time,
                pool.cliff_duration_seconds,
                pool.vesting_duration_seconds,
                pool.state.value,
                pool.escrow_id,
            ),
        )

    async def add_allocation(self, allocation: Allocation) -> None:
        await self._fetch_all(
            """
            INSERT INTO public.allocation
                (id, pool_id, wallet, token_amount, share_percentage, is_active, is_cancelled, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                allocation.id,
                allocation.pool_id,
                allocation.wallet,
                allocation.token_amount,
                allocation.share_percentage,
                allocation.is_active,
                allocation.is_cancelled,
                allocation.created_at,
            ),
        )


__all__ = ["LedgerStore", "PostgresLedgerStore"]
