"""
Two-phase claim settlement.

Phase A (`prepare_claim`) is pure computation: aggregate, distribute, quote the
fee and build the unsigned fee-payment instruction. Nothing is persisted.

Phase B (`complete_claim`) turns a paid fee into a token transfer:

1. verify the fee transaction on the ledger (exists, succeeded, paid by the
   wallet into the fee account);
2. reject fee transactions that already opened a settlement or back claim
   receipts;
3. re-derive the breakdown for the requested total from current balances (the
   client split is advisory; the requested total is what must fit);
4. claim the fee transaction in the ``settlement`` table (the store-enforced
   guard against concurrent settlements of the same fee);
5. run the transfer through the supervisor, recording each submitted id;
6. write the claim receipts and close the settlement in one transaction.

A crash or store failure after step 5 leaves the settlement open for
`SettlementReconciler`.
"""

from __future__ import annotations

from typing import Optional, Sequence

from claimledger.domain.errors import (
    ClaimsDisabledError,
    ConflictError,
    NotFoundError,
    ReconciliationPendingError,
    TransferFailedError,
    ValidationError,
)
from claimledger.domain.models import (
    BreakdownEntry,
    ClaimIntent,
    HistoryPage,
    LedgerTransaction,
    PlatformConfig,
    Settlement,
    SettlementReceipt,
    UnsignedTransfer,
    WalletBalance,
)
from claimledger.engine.aggregator import ClaimableAggregator
from claimledger.engine.distributor import distribute, same_breakdown
from claimledger.engine.fees import FeeQuoter, build_claim_records
from claimledger.engine.supervisor import TransferSupervisor
from claimledger.infrastructure.ledger_client import LedgerClient
from claimledger.infrastructure.store import LedgerStore
from claimledger.utils.clock import Clock, SystemClock, utc_from_timestamp
from claimledger.utils.logging import get_logger

log = get_logger(__name__)

FEE_ALREADY_USED = "This fee payment has already been used for a claim"


class ClaimSettlementService:
    def __init__(
        self,
        store: LedgerStore,
        aggregator: ClaimableAggregator,
        fee_quoter: FeeQuoter,
        ledger: LedgerClient,
        supervisor: TransferSupervisor,
        fee_account: str,
        clock: Optional[Clock] = None,
        history_page_size: int = 20,
        history_max_page_size: int = 100,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._fee_quoter = fee_quoter
        self._ledger = ledger
        self._supervisor = supervisor
        self._fee_account = fee_account
        self._clock = clock or SystemClock()
        self._history_page_size = history_page_size
        self._history_max_page_size = history_max_page_size

    @staticmethod
    def _require_wallet(wallet: str) -> str:
        wallet = (wallet or "").strip()
        if not wallet:
            raise ValidationError("Wallet address is required")
        return wallet

    async def platform_config(self) -> PlatformConfig:
        return await self._store.get_platform_config()

    async def summary(self, wallet: str, pool_id: Optional[str] = None) -> WalletBalance:
        wallet = self._require_wallet(wallet)
        balance = await self._aggregator.wallet_balance(wallet, pool_id=pool_id)
        if not balance.allocations:
            if pool_id is not None:
                raise NotFoundError(
                    "No active vesting allocation found in this pool", wallet=wallet, pool_id=pool_id
                )
            raise NotFoundError("No active vesting allocation found", wallet=wallet)
        return balance

    async def prepare_claim(self, wallet: str, amount: Optional[int] = None) -> ClaimIntent:
        """
        Phase A. ``amount`` is in base units; None claims the whole floored
        available balance.
        """
        wallet = self._require_wallet(wallet)
        config = await self._store.get_platform_config()
        if not config.claims_enabled:
            raise ClaimsDisabledError("Claims are currently disabled")

        balance = await self._aggregator.wallet_balance(wallet)
        if not balance.eligible:
            raise NotFoundError("No eligible vesting allocation found", wallet=wallet)

        if amount is None:
            if balance.total_available <= 0:
                raise ValidationError("No tokens available to claim", wallet=wallet)
            target = balance.total_available
        else:
            target = amount
        breakdown = distribute(target, balance.allocations, balance.total_available)

        quote = await self._fee_quoter.quote()
        freshness_token = await self._ledger.get_freshness_token()
        fee_transfer = UnsignedTransfer(
            source=wallet,
            destination=quote.fee_account,
            amount=quote.amount,
            freshness_token=freshness_token,
        )
        log.info(
            "[CLAIM] Claim prepared",
            extra={
                "wallet": wallet,
                "amount": target,
                "total_available": balance.total_available,
                "entries": len(breakdown),
                "fee_amount": quote.amount,
            },
        )
        return ClaimIntent(
            wallet=wallet,
            amount=target,
            total_available=balance.total_available,
            breakdown=breakdown,
            fee_quote=quote,
            fee_transfer=fee_transfer,
        )

    async def _verify_fee(self, wallet: str, fee_tx_id: str) -> int:
        tx: Optional[LedgerTransaction] = await self._ledger.get_transaction(fee_tx_id)
        if tx is None or not tx.succeeded:
            raise ValidationError(
                "Fee payment transaction not found or failed", fee_tx_id=fee_tx_id
            )
        if tx.payer != wallet:
            raise ValidationError(
                "Fee payment was not made by this wallet", fee_tx_id=fee_tx_id, payer=tx.payer
            )
        fee_paid = tx.balance_changes.get(self._fee_account, 0)
        if fee_paid <= 0:
            raise ValidationError(
                "Fee payment did not reach the platform fee account", fee_tx_id=fee_tx_id
            )
        return fee_paid

    async def complete_claim(
        self, wallet: str, fee_tx_id: str, breakdown: Sequence[BreakdownEntry]
    ) -> SettlementReceipt:
        """Phase B. See the module docstring for the step order."""
        wallet = self._require_wallet(wallet)
        fee_tx_id = (fee_tx_id or "").strip()
        if not fee_tx_id:
            raise ValidationError("Fee transaction id is required")
        if not breakdown:
            raise ValidationError("Breakdown must contain at least one entry")

        fee_paid = await self._verify_fee(wallet, fee_tx_id)

        existing = await self._store.get_settlement(fee_tx_id)
        if existing is not None or await self._store.find_claims_by_fee_tx(fee_tx_id):
            status = existing.status.value if existing is not None else None
            log.warning(
                "[COMPLETE-CLAIM] Fee payment reused",
                extra={"wallet": wallet, "fee_tx_id": fee_tx_id, "status": status},
            )
            raise ConflictError(FEE_ALREADY_USED, fee_tx_id=fee_tx_id, status=status)

        target = sum(entry.amount for entry in breakdown)
        balance = await self._aggregator.wallet_balance(wallet)
        expected = distribute(target, balance.allocations, balance.total_available)
        if not same_breakdown(expected, breakdown):
            log.info(
                "[COMPLETE-CLAIM] Breakdown re-derived from current balances",
                extra={
                    "wallet": wallet,
                    "fee_tx_id": fee_tx_id,
                    "submitted": [entry.amount for entry in breakdown],
                    "settled": [entry.amount for entry in expected],
                },
            )

        now = utc_from_timestamp(self._clock.now())
        settlement = Settlement(
            fee_tx_id=fee_tx_id,
            wallet=wallet,
            amount=target,
            fee_paid=fee_paid,
            breakdown=expected,
            created_at=now,
            updated_at=now,
        )
        if not await self._store.begin_settlement(settlement):
            log.warning(
                "[COMPLETE-CLAIM] Settlement already started for fee payment",
                extra={"wallet": wallet, "fee_tx_id": fee_tx_id},
            )
            raise ConflictError(FEE_ALREADY_USED, fee_tx_id=fee_tx_id)

        async def _submitted(transfer_tx_id: str) -> None:
            await self._store.mark_settlement_submitted(fee_tx_id, transfer_tx_id)

        try:
            transfer_tx_id = await self._supervisor.transfer(wallet, target, on_submitted=_submitted)
        except TransferFailedError as exc:
            if exc.context.get("unresolved"):
                # Left open: the reconciler settles it once the ledger decides.
                log.error(
                    "[COMPLETE-CLAIM] Transfer unresolved, settlement left for reconciliation",
                    extra={"wallet": wallet, "fee_tx_id": fee_tx_id, "unresolved": exc.context["unresolved"]},
                )
            else:
                await self._store.mark_settlement_failed(fee_tx_id, exc.message)
                log.error(
                    "[COMPLETE-CLAIM] Transfer failed",
                    extra={"wallet": wallet, "fee_tx_id": fee_tx_id, "error": exc.message},
                )
            raise

        records = build_claim_records(
            wallet=wallet,
            breakdown=expected,
            fee_paid=fee_paid,
            fee_tx_id=fee_tx_id,
            transfer_tx_id=transfer_tx_id,
            claimed_at=utc_from_timestamp(self._clock.now()),
        )
        try:
            await self._store.record_settlement(fee_tx_id, transfer_tx_id, records)
        except Exception as exc:
            log.exception(
                "[COMPLETE-CLAIM] Transfer confirmed but receipts not written",
                extra={"wallet": wallet, "fee_tx_id": fee_tx_id, "transfer_tx_id": transfer_tx_id},
            )
            raise ReconciliationPendingError(
                "Tokens were transferred but the claim could not be recorded; it will be reconciled",
                transfer_tx_id=transfer_tx_id,
                fee_tx_id=fee_tx_id,
            ) from exc

        log.info(
            "[COMPLETE-CLAIM] Claim settled",
            extra={
                "wallet": wallet,
                "fee_tx_id": fee_tx_id,
                "transfer_tx_id": transfer_tx_id,
                "amount": target,
                "fee_paid": fee_paid,
                "entries": len(records),
            },
        )
        return SettlementReceipt(
            wallet=wallet,
            fee_tx_id=fee_tx_id,
            transfer_tx_id=transfer_tx_id,
            amount=target,
            fee_paid=fee_paid,
            breakdown=expected,
        )

    async def history(self, wallet: str, page: int = 1, limit: Optional[int] = None) -> HistoryPage:
        wallet = self._require_wallet(wallet)
        size = self._history_page_size if limit is None else limit
        if page < 1:
            raise ValidationError("page must be >= 1", page=page)
        if size < 1 or size > self._history_max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self._history_max_page_size}", limit=size
            )
        entries, total = await self._store.claim_history(wallet, size, (page - 1) * size)
        return HistoryPage(items=tuple(entries), total=total, page=page, limit=size)


__all__ = ["ClaimSettlementService", "FEE_ALREADY_USED"]
