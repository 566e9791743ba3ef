"""
Confirmation/retry supervisor for treasury token transfers.

One attempt = fetch a fresh freshness token, submit, then wait for confirmation
up to ``confirm_timeout`` seconds. A wait that times out is not a failure: the
transfer's status is polled directly and a late confirmation counts as
success. Failed or still-unconfirmed attempts are retried with capped
exponential backoff (1 s, 2 s, 4 s ... capped at 5 s by default).

Before every re-submission the supervisor polls the transfers it already
submitted, so a transfer that lands while we were backing off ends the loop
instead of being paid twice.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from claimledger.domain.errors import ExternalServiceError, TransferFailedError
from claimledger.domain.models import TransferStatus
from claimledger.infrastructure.ledger_client import LedgerClient, TransferSubmissionError
from claimledger.utils.logging import get_logger
from claimledger.utils.timing import timed_block

log = get_logger(__name__)

SubmittedHook = Callable[[str], Awaitable[None]]


class _AttemptFailed(Exception):
    def __init__(self, reason: str, status: Optional[TransferStatus] = None) -> None:
        super().__init__(reason)
        self.status = status


class TransferSupervisor:
    """
    Parameters
    ----------
    ledger : LedgerClient
        Ledger used to submit, confirm and poll transfers.
    max_attempts : int
        Total submissions allowed, including the first.
    backoff_base, backoff_max : float
        Exponential backoff multiplier and cap, in seconds.
    confirm_timeout : float
        Upper bound on one confirmation wait before falling back to polling.
    sleep : callable, optional
        Awaitable sleep used between attempts; injectable for tests.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 5.0,
        confirm_timeout: float = 30.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._ledger = ledger
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._confirm_timeout = confirm_timeout
        self._sleep = sleep or asyncio.sleep

    async def _poll(self, tx_id: str) -> TransferStatus:
        try:
            return await self._ledger.get_transaction_status(tx_id)
        except ExternalServiceError as exc:
            log.warning(
                "[SUPERVISOR] Status poll failed",
                extra={"transfer_tx_id": tx_id, "error": str(exc)},
            )
            return TransferStatus.PENDING

    async def _find_confirmed(self, submitted: List[str]) -> Optional[str]:
        for tx_id in submitted:
            if await self._poll(tx_id) is TransferStatus.CONFIRMED:
                return tx_id
        return None

    async def _attempt(
        self,
        destination: str,
        amount: int,
        submitted: List[str],
        on_submitted: Optional[SubmittedHook],
    ) -> str:
        landed = await self._find_confirmed(submitted)
        if landed is not None:
            log.info("[SUPERVISOR] Earlier submission confirmed late", extra={"transfer_tx_id": landed})
            return landed

        try:
            token = await self._ledger.get_freshness_token()
            tx_id = await self._ledger.submit_token_transfer(destination, amount, token)
        except (TransferSubmissionError, ExternalServiceError) as exc:
            raise _AttemptFailed(f"submission failed: {exc}") from exc

        submitted.append(tx_id)
        if on_submitted is not None:
            await on_submitted(tx_id)

        with timed_block("confirm-transfer") as stats:
            try:
                status = await asyncio.wait_for(
                    self._ledger.confirm_transaction(tx_id), timeout=self._confirm_timeout
                )
            except asyncio.TimeoutError:
                log.warning(
                    "[SUPERVISOR] Confirmation wait timed out, polling status",
                    extra={"transfer_tx_id": tx_id, "timeout_seconds": self._confirm_timeout},
                )
                status = await self._poll(tx_id)
            except ExternalServiceError as exc:
                log.warning(
                    "[SUPERVISOR] Confirmation wait failed, polling status",
                    extra={"transfer_tx_id": tx_id, "error": str(exc)},
                )
                status = await self._poll(tx_id)

        log.info(
            "[SUPERVISOR] Transfer status",
            extra={"transfer_tx_id": tx_id, "status": status.value, "duration_ms": stats.duration_ms},
        )
        if status is TransferStatus.CONFIRMED:
            return tx_id
        raise _AttemptFailed(f"transfer {tx_id} {status.value}", status=status)

    async def transfer(
        self,
        destination: str,
        amount: int,
        on_submitted: Optional[SubmittedHook] = None,
    ) -> str:
        """
        Move ``amount`` base units from the treasury to ``destination``.

        ``on_submitted`` is awaited with every transfer id right after it is
        submitted, before the confirmation wait.

        Returns
        -------
        str
            Id of the confirmed transfer.

        Raises
        ------
        TransferFailedError
            When every attempt failed. ``context["unresolved"]`` lists the
            submitted transfers whose final status was still pending.
        """
        submitted: List[str] = []
        last_error: Optional[_AttemptFailed] = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._backoff_base, max=self._backoff_max),
                retry=retry_if_exception_type(_AttemptFailed),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    if number > 1:
                        log.info(
                            "[SUPERVISOR] Retrying transfer",
                            extra={"attempt": number, "destination": destination, "amount": amount},
                        )
                    return await self._attempt(destination, amount, submitted, on_submitted)
        except _AttemptFailed as exc:
            last_error = exc

        landed = await self._find_confirmed(submitted)
        if landed is not None:
            return landed

        unresolved = [tx for tx in submitted if await self._poll(tx) is TransferStatus.PENDING]
        log.error(
            "[SUPERVISOR] Transfer failed after retries",
            extra={
                "destination": destination,
                "amount": amount,
                "attempts": self._max_attempts,
                "submitted": submitted,
                "unresolved": unresolved,
            },
        )
        raise TransferFailedError(
            f"Token transfer failed after {self._max_attempts} attempts: {last_error}",
            attempts=self._max_attempts,
            submitted=submitted,
            unresolved=unresolved,
        )


__all__ = ["TransferSupervisor", "SubmittedHook"]
