"""
HTTP surface of the claim ledger.

A thin FastAPI layer over `ClaimSettlementService`: request parsing, per-wallet
rate limiting, duplicate-request observation and error mapping. Amounts go
over the wire as base-unit integer strings with a display-unit companion
field; requests may send the Phase-A ``amount`` in display units.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from claimledger import __version__
from claimledger.bootstrap import Engine, build_engine
from claimledger.config import Settings, get_settings
from claimledger.domain.errors import ClaimLedgerError, RateLimitedError
from claimledger.domain.models import (
    AllocationBalance,
    BreakdownEntry,
    ClaimIntent,
    HistoryPage,
    SettlementReceipt,
    WalletBalance,
)
from claimledger.domain.units import to_base_units, to_display
from claimledger.utils.logging import get_logger
from claimledger.utils.timing import process_snapshot, timed_block

log = get_logger(__name__)

router = APIRouter(prefix="/vesting", tags=["Vesting"])


class ClaimRequest(BaseModel):
    wallet: str
    amount: Optional[Decimal] = Field(None, description="Display units; omit to claim everything available.")


class BreakdownItem(BaseModel):
    pool_id: str = Field(..., alias="poolId")
    allocation_id: str = Field(..., alias="allocationId")
    amount: int = Field(..., gt=0, description="Base units, as returned by /vesting/claim.")

    model_config = {"populate_by_name": True}


class CompleteClaimRequest(BaseModel):
    wallet: str
    fee_transaction_id: str = Field(..., alias="feeTransactionId")
    breakdown: List[BreakdownItem]

    model_config = {"populate_by_name": True}


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def _amounts(key: str, base: int, decimals: int) -> Dict[str, str]:
    return {key: str(base), f"{key}Display": str(to_display(base, decimals))}


def _breakdown_json(breakdown: tuple, decimals: int) -> List[Dict[str, Any]]:
    return [
        {
            "poolId": entry.pool_id,
            "poolName": entry.pool_name,
            "allocationId": entry.allocation_id,
            **_amounts("amount", entry.amount, decimals),
        }
        for entry in breakdown
    ]


def _allocation_json(balance: AllocationBalance, now: float, decimals: int) -> Dict[str, Any]:
    schedule = balance.pool.schedule
    return {
        "poolId": balance.pool.id,
        "poolName": balance.pool.name,
        "poolState": balance.pool.state.value,
        "allocationId": balance.allocation.id,
        "sharePercentage": (
            str(balance.allocation.share_percentage)
            if balance.allocation.share_percentage is not None
            else None
        ),
        **_amounts("tokenAmount", balance.allocation.token_amount, decimals),
        **_amounts("vested", balance.vested, decimals),
        **_amounts("claimed", balance.claimed, decimals),
        **_amounts("reserved", balance.reserved, decimals),
        **_amounts("claimable", balance.claimable, decimals),
        **_amounts("locked", balance.locked, decimals),
        "vestedPercentage": round(balance.vested_fraction * 100, 2),
        "claimEligible": balance.claim_eligible,
        "vestingSource": balance.source.value,
        "escrowId": balance.pool.escrow_id,
        "schedule": {"start": schedule.start, "cliff": schedule.cliff, "end": schedule.end},
        "secondsUntilFullyVested": max(0, int(schedule.end - now)),
    }


def _summary_json(balance: WalletBalance, claims_enabled: bool, decimals: int) -> Dict[str, Any]:
    return {
        "success": True,
        "wallet": balance.wallet,
        "claimsEnabled": claims_enabled,
        "asOf": balance.as_of,
        "totals": {
            **_amounts("available", balance.total_available, decimals),
            **_amounts("claimed", balance.total_claimed, decimals),
            **_amounts("locked", balance.total_locked, decimals),
        },
        "allocations": [_allocation_json(b, balance.as_of, decimals) for b in balance.allocations],
    }


def _intent_json(intent: ClaimIntent, settings: Settings) -> Dict[str, Any]:
    quote = intent.fee_quote
    return {
        "success": True,
        "wallet": intent.wallet,
        **_amounts("amount", intent.amount, settings.token_decimals),
        **_amounts("totalAvailable", intent.total_available, settings.token_decimals),
        "breakdown": _breakdown_json(intent.breakdown, settings.token_decimals),
        "fee": {
            "usd": str(quote.fee_usd),
            "nativePriceUsd": str(quote.native_price_usd),
            **_amounts("amount", quote.amount, settings.native_decimals),
            "account": quote.fee_account,
        },
        "feeTransaction": {
            "source": intent.fee_transfer.source,
            "destination": intent.fee_transfer.destination,
            "amount": str(intent.fee_transfer.amount),
            "asset": intent.fee_transfer.asset,
            "freshnessToken": intent.fee_transfer.freshness_token,
        },
    }


def _receipt_json(receipt: SettlementReceipt, settings: Settings) -> Dict[str, Any]:
    return {
        "success": True,
        "wallet": receipt.wallet,
        "transferTransactionId": receipt.transfer_tx_id,
        "feeTransactionId": receipt.fee_tx_id,
        **_amounts("amount", receipt.amount, settings.token_decimals),
        **_amounts("feePaid", receipt.fee_paid, settings.native_decimals),
        "breakdown": _breakdown_json(receipt.breakdown, settings.token_decimals),
    }


def _history_json(page: HistoryPage, settings: Settings) -> Dict[str, Any]:
    return {
        "success": True,
        "items": [
            {
                "id": entry.record.id,
                "allocationId": entry.record.allocation_id,
                "poolId": entry.pool_id,
                "poolName": entry.pool_name,
                "poolState": entry.pool_state.value if entry.pool_state else None,
                **_amounts("amountClaimed", entry.record.amount_claimed, settings.token_decimals),
                **_amounts("feePaid", entry.record.fee_paid, settings.native_decimals),
                "transferTransactionId": entry.record.transfer_tx_id,
                "feeTransactionId": entry.record.fee_tx_id,
                "claimedAt": entry.record.claimed_at.astimezone(timezone.utc).isoformat(),
            }
            for entry in page.items
        ],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "pages": (page.total + page.limit - 1) // page.limit,
    }


@router.get("/summary")
async def vesting_summary(
    wallet: str = Query(...),
    pool_id: Optional[str] = Query(None, alias="poolId"),
    engine: Engine = Depends(get_engine),
):
    balance = await engine.service.summary(wallet, pool_id=pool_id)
    config = await engine.service.platform_config()
    return _summary_json(balance, config.claims_enabled, engine.settings.token_decimals)


@router.post("/claim")
async def vesting_claim(body: ClaimRequest, engine: Engine = Depends(get_engine)):
    engine.rate_limiter.check(f"claim:{body.wallet}")
    key = engine.deduplicator.observe(body.wallet, "claim", body.model_dump(mode="json"))
    amount = None
    if body.amount is not None:
        amount = to_base_units(body.amount, engine.settings.token_decimals)
    intent = await engine.service.prepare_claim(body.wallet, amount)
    engine.deduplicator.mark_completed(key, 200)
    return _intent_json(intent, engine.settings)


@router.post("/complete-claim")
async def vesting_complete_claim(body: CompleteClaimRequest, engine: Engine = Depends(get_engine)):
    engine.rate_limiter.check(f"complete-claim:{body.wallet}")
    key = engine.deduplicator.observe(body.wallet, "complete-claim", body.model_dump(mode="json"))
    breakdown = [
        BreakdownEntry(pool_id=item.pool_id, allocation_id=item.allocation_id, amount=item.amount)
        for item in body.breakdown
    ]
    receipt = await engine.service.complete_claim(body.wallet, body.fee_transaction_id, breakdown)
    engine.deduplicator.mark_completed(key, 200)
    return _receipt_json(receipt, engine.settings)


@router.get("/history")
async def vesting_history(
    wallet: str = Query(...),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    engine: Engine = Depends(get_engine),
):
    result = await engine.service.history(wallet, page=page, limit=limit)
    return _history_json(result, engine.settings)


async def _claim_ledger_error_handler(request: Request, exc: ClaimLedgerError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        log.error("Request failed", extra={"path": request.url.path, "code": exc.kind, "error": exc.message})
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_payload()),
        headers=headers,
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "internal", "retryable": False},
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(
            {
                "success": False,
                "error": "Invalid request",
                "code": "validation",
                "retryable": False,
                "details": {
                    "errors": [
                        {"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()
                    ]
                },
            }
        ),
    )


def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    With ``engine`` given (tests, embedding) the app uses it as-is and leaves
    its lifecycle to the caller; otherwise the lifespan builds one from
    settings and closes it on shutdown.
    """
    settings = settings or (engine.settings if engine is not None else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = engine is None
        if owned:
            app.state.engine = await build_engine(settings)
        log.info("Claim ledger API started", extra={"env": settings.app_env})
        try:
            yield
        finally:
            if owned:
                await app.state.engine.aclose()
            log.info("Claim ledger API stopped")

    app = FastAPI(
        title="Vesting Claim Ledger API",
        version=__version__,
        lifespan=lifespan,
    )
    if engine is not None:
        app.state.engine = engine

    app.add_exception_handler(ClaimLedgerError, _claim_ledger_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        with timed_block(f"{request.method} {request.url.path}") as stats:
            response = await call_next(request)
        log.info(
            "HTTP request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": stats.duration_ms,
            },
        )
        return response

    @app.get("/health")
    async def health(request: Request):
        current: Engine = request.app.state.engine
        snapshot = process_snapshot()
        return {
            "status": "ok",
            "env": current.settings.app_env,
            "version": __version__,
            "rssBytes": snapshot.rss_bytes,
            "cpuPercent": snapshot.cpu_percent,
            "caches": current.cache_sizes(),
            "duplicateRequestsObserved": current.deduplicator.hits,
        }

    app.include_router(router)
    return app


__all__ = ["create_app", "router", "ClaimRequest", "CompleteClaimRequest"]
