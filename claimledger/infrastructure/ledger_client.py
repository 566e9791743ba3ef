"""
Distributed-ledger client.

Reads go to a JSON-RPC node (`getTransaction`, `getSignatureStatuses`,
`getLatestBlockhash`); token transfers are submitted through the treasury
transfer signer, a custody service that holds the treasury key and returns the
signature of the transaction it broadcast.

The engine only depends on the `LedgerClient` protocol.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from claimledger.domain.errors import ExternalServiceError
from claimledger.domain.models import LedgerTransaction, TransferStatus
from claimledger.utils.logging import get_logger

log = get_logger(__name__)

_CONFIRMED_LEVELS = frozenset({"confirmed", "finalized"})


class TransferSubmissionError(Exception):
    """The signer or node explicitly rejected a transfer submission."""


@runtime_checkable
class LedgerClient(Protocol):
    async def get_transaction(self, tx_id: str) -> Optional[LedgerTransaction]:
        """Return the transaction or None when the ledger does not know it."""
        ...

    async def get_transaction_status(self, tx_id: str) -> TransferStatus:
        ...

    async def confirm_transaction(self, tx_id: str) -> TransferStatus:
        """Wait until ``tx_id`` leaves the pending state; callers bound the wait."""
        ...

    async def get_freshness_token(self) -> str:
        ...

    async def submit_token_transfer(self, destination: str, amount: int, freshness_token: str) -> str:
        """Submit a treasury → ``destination`` token transfer and return its id."""
        ...


def parse_transaction(tx_id: str, result: Dict[str, Any]) -> LedgerTransaction:
    """
    Extract payer, error and native balance deltas from a `getTransaction` result.
    """
    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}
    keys: List[Any] = message.get("accountKeys") or []
    account_keys = [k["pubkey"] if isinstance(k, dict) else k for k in keys]
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    changes = {
        account: int(post[i]) - int(pre[i])
        for i, account in enumerate(account_keys)
        if i < len(pre) and i < len(post)
    }
    err = meta.get("err")
    return LedgerTransaction(
        tx_id=tx_id,
        payer=account_keys[0] if account_keys else None,
        error=None if err is None else str(err),
        balance_changes=changes,
    )


def classify_status(value: Optional[Dict[str, Any]]) -> TransferStatus:
    """Map one `getSignatureStatuses` entry to a transfer status."""
    if value is None:
        return TransferStatus.PENDING
    if value.get("err") is not None:
        return TransferStatus.FAILED
    if value.get("confirmationStatus") in _CONFIRMED_LEVELS:
        return TransferStatus.CONFIRMED
    return TransferStatus.PENDING


class HttpLedgerClient:
    """`LedgerClient` over httpx for a JSON-RPC node plus the transfer signer."""

    def __init__(
        self,
        rpc_url: str,
        signer_url: str,
        token_mint: str = "",
        timeout: float = 10.0,
        poll_interval: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._signer_url = signer_url.rstrip("/")
        self._token_mint = token_mint
        self._poll_interval = poll_interval
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(3),
                wait=wait_exponential(multiplier=0.5, max=4),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.post(self._rpc_url, json=payload)
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Ledger RPC {method} failed: {exc}", method=method) from exc
        body = response.json()
        if body.get("error"):
            raise ExternalServiceError(
                f"Ledger RPC {method} returned an error", method=method, rpc_error=body["error"]
            )
        return body.get("result")

    async def get_transaction(self, tx_id: str) -> Optional[LedgerTransaction]:
        result = await self._rpc(
            "getTransaction",
            [tx_id, {"encoding": "json", "commitment": "confirmed", "maxSupportedTransactionVersion": 0}],
        )
        if result is None:
            return None
        return parse_transaction(tx_id, result)

    async def get_transaction_status(self, tx_id: str) -> TransferStatus:
        result = await self._rpc(
            "getSignatureStatuses", [[tx_id], {"searchTransactionHistory": True}]
        )
        values = (result or {}).get("value") or [None]
        return classify_status(values[0])

    async def confirm_transaction(self, tx_id: str) -> TransferStatus:
        while True:
            status = await self.get_transaction_status(tx_id)
            if status is not TransferStatus.PENDING:
                return status
            await asyncio.sleep(self._poll_interval)

    async def get_freshness_token(self) -> str:
        result = await self._rpc("getLatestBlockhash", [{"commitment": "finalized"}])
        return result["value"]["blockhash"]

    async def submit_token_transfer(self, destination: str, amount: int, freshness_token: str) -> str:
        # Submissions are never retried here: a retried POST could broadcast twice.
        try:
            response = await self._client.post(
                f"{self._signer_url}/transfers",
                json={
                    "destination": destination,
                    "amount": str(amount),
                    "mint": self._token_mint,
                    "recentBlockhash": freshness_token,
                    "createDestinationAccount": True,
                },
            )
        except httpx.HTTPError as exc:
            raise TransferSubmissionError(f"Transfer signer unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise TransferSubmissionError(
                f"Transfer signer rejected submission ({response.status_code}): {response.text}"
            )
        signature = response.json().get("signature")
        if not signature:
            raise TransferSubmissionError("Transfer signer returned no signature")
        log.info("Transfer submitted", extra={"transfer_tx_id": signature, "amount": amount})
        return signature


__all__ = [
    "LedgerClient",
    "HttpLedgerClient",
    "TransferSubmissionError",
    "classify_status",
    "parse_transaction",
]
