"""
Error taxonomy for the claim ledger.

Every error the engine raises on purpose derives from `ClaimLedgerError` and
carries a machine-readable ``kind``, the HTTP status it maps to, whether a
client may retry, and free-form context for the response ``details``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ClaimLedgerError(Exception):
    kind: str = "internal"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.kind,
            "retryable": self.retryable,
        }
        if self.context:
            payload["details"] = self.context
        return payload


class ValidationError(ClaimLedgerError):
    """Malformed or out-of-range request."""

    kind = "validation"
    status_code = 400


class NotFoundError(ClaimLedgerError):
    kind = "not_found"
    status_code = 404


class ConflictError(ClaimLedgerError):
    """
    A fee payment that has already been used for a settlement.

    Reported as 400 like validation failures, but with its own ``kind`` so
    clients can tell that retrying will never succeed.
    """

    kind = "conflict"
    status_code = 400


class ClaimsDisabledError(ClaimLedgerError):
    kind = "claims_disabled"
    status_code = 403


class RateLimitedError(ClaimLedgerError):
    kind = "rate_limited"
    status_code = 429
    retryable = True

    def __init__(self, message: str, retry_after: int, **context: Any) -> None:
        super().__init__(message, retry_after=retry_after, **context)
        self.retry_after = retry_after


class ExternalServiceError(ClaimLedgerError):
    """A collaborator (ledger RPC, price oracle, escrow API) is unreachable or misbehaving."""

    kind = "external_unavailable"
    status_code = 502
    retryable = True


class TransferFailedError(ClaimLedgerError):
    """The token transfer could not be confirmed after every retry."""

    kind = "transfer_failed"
    status_code = 500


class ReconciliationPendingError(ClaimLedgerError):
    """
    The transfer is confirmed on the ledger but the claim receipts could not be
    written; the reconciliation job will record them.
    """

    kind = "reconciliation_pending"
    status_code = 500

    def __init__(self, message: str, transfer_tx_id: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, transfer_tx_id=transfer_tx_id, **context)
        self.transfer_tx_id = transfer_tx_id


__all__ = [
    "ClaimLedgerError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ClaimsDisabledError",
    "RateLimitedError",
    "ExternalServiceError",
    "TransferFailedError",
    "ReconciliationPendingError",
]
