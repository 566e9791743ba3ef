"""
Settlement reconciliation.

Scans settlements left in ``pending`` or ``submitted`` for longer than the
grace period and settles them against the ledger. Every transfer the
supervisor submitted for a settlement is polled, not only the latest:

- any submitted transfer confirmed -> write the missing claim receipts (recorded);
- every submitted transfer failed -> failed;
- otherwise -> left alone for the next run.

A settlement with no submitted transfer may still have a transfer in flight
that was signed but never reported back, so it is flagged for review instead of
being failed. ``run(fail_unsubmitted=True)`` closes those as failed once an
operator has checked the ledger.

A store or ledger error on one settlement never stops the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from claimledger.domain.errors import ExternalServiceError
from claimledger.domain.models import Settlement, TransferStatus
from claimledger.engine.fees import build_claim_records
from claimledger.infrastructure.ledger_client import LedgerClient
from claimledger.infrastructure.store import LedgerStore
from claimledger.utils.clock import Clock, SystemClock, utc_from_timestamp
from claimledger.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class ReconcileReport:
    recorded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    needs_review: List[str] = field(default_factory=list)
    errored: List[str] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        return (
            len(self.recorded)
            + len(self.failed)
            + len(self.pending)
            + len(self.needs_review)
            + len(self.errored)
        )


class SettlementReconciler:
    def __init__(
        self,
        store: LedgerStore,
        ledger: LedgerClient,
        grace_seconds: float = 120.0,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._grace_seconds = grace_seconds
        self._clock = clock or SystemClock()

    async def _record(self, settlement: Settlement, transfer_tx_id: str, report: ReconcileReport) -> None:
        records = build_claim_records(
            wallet=settlement.wallet,
            breakdown=settlement.breakdown,
            fee_paid=settlement.fee_paid,
            fee_tx_id=settlement.fee_tx_id,
            transfer_tx_id=transfer_tx_id,
            claimed_at=utc_from_timestamp(self._clock.now()),
        )
        await self._store.record_settlement(settlement.fee_tx_id, transfer_tx_id, records)
        report.recorded.append(settlement.fee_tx_id)
        log.info(
            "[RECONCILE] Confirmed transfer recorded",
            extra={"fee_tx_id": settlement.fee_tx_id, "transfer_tx_id": transfer_tx_id},
        )

    async def _settle(self, settlement: Settlement, report: ReconcileReport, fail_unsubmitted: bool) -> None:
        fee_tx_id = settlement.fee_tx_id
        transfers = settlement.submitted_transfers
        if not transfers:
            if fail_unsubmitted:
                await self._store.mark_settlement_failed(fee_tx_id, "transfer was never submitted")
                report.failed.append(fee_tx_id)
                log.info("[RECONCILE] Unsubmitted settlement marked failed", extra={"fee_tx_id": fee_tx_id})
            else:
                report.needs_review.append(fee_tx_id)
                log.error(
                    "[RECONCILE] Settlement has no submitted transfer, check the ledger before failing it",
                    extra={"fee_tx_id": fee_tx_id, "wallet": settlement.wallet, "amount": settlement.amount},
                )
            return

        statuses = {tx_id: await self._ledger.get_transaction_status(tx_id) for tx_id in transfers}
        confirmed = [tx_id for tx_id in transfers if statuses[tx_id] is TransferStatus.CONFIRMED]
        if confirmed:
            if len(confirmed) > 1:
                log.error(
                    "[RECONCILE] More than one transfer confirmed for a single settlement",
                    extra={"fee_tx_id": fee_tx_id, "confirmed": confirmed},
                )
            await self._record(settlement, confirmed[0], report)
        elif all(status is TransferStatus.FAILED for status in statuses.values()):
            await self._store.mark_settlement_failed(fee_tx_id, "transfer failed on ledger")
            report.failed.append(fee_tx_id)
            log.info(
                "[RECONCILE] Failed transfers closed",
                extra={"fee_tx_id": fee_tx_id, "transfers": list(transfers)},
            )
        else:
            report.pending.append(fee_tx_id)

    async def run(self, fail_unsubmitted: bool = False) -> ReconcileReport:
        cutoff = utc_from_timestamp(self._clock.now() - self._grace_seconds)
        report = ReconcileReport()
        for settlement in await self._store.list_open_settlements(cutoff):
            try:
                await self._settle(settlement, report, fail_unsubmitted)
            except ExternalServiceError as exc:
                report.pending.append(settlement.fee_tx_id)
                log.warning(
                    "[RECONCILE] Ledger unavailable, settlement left open",
                    extra={"fee_tx_id": settlement.fee_tx_id, "error": str(exc)},
                )
            except Exception:
                report.errored.append(settlement.fee_tx_id)
                log.exception(
                    "[RECONCILE] Settlement could not be reconciled",
                    extra={"fee_tx_id": settlement.fee_tx_id},
                )
        log.info(
            "[RECONCILE] Run complete",
            extra={
                "recorded": len(report.recorded),
                "failed": len(report.failed),
                "pending": len(report.pending),
                "needs_review": len(report.needs_review),
                "errored": len(report.errored),
            },
        )
        return report


__all__ = ["ReconcileReport", "SettlementReconciler"]
