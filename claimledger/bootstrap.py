"""
Process wiring.

Every stateful component (caches, rate limiter, deduplicator, HTTP clients,
the database pool) is built exactly once here and handed to the API and CLI
by reference. `assemble_engine` takes ready-made collaborators, which is how
tests plug in fakes; `build_engine` creates the production ones from settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from claimledger.config import Settings, get_settings
from claimledger.engine.aggregator import ClaimableAggregator
from claimledger.engine.escrow_cache import EscrowVestedCache
from claimledger.engine.fees import FeeQuoter
from claimledger.engine.rate_limit import FixedWindowRateLimiter, RequestDeduplicator
from claimledger.engine.reconcile import SettlementReconciler
from claimledger.engine.settlement import ClaimSettlementService
from claimledger.engine.supervisor import TransferSupervisor
from claimledger.engine.vesting import VestingCalculator
from claimledger.infrastructure.db_factory import PoolManager
from claimledger.infrastructure.escrow_client import EscrowClient, HttpEscrowClient
from claimledger.infrastructure.keyed_store import InMemoryKeyedStore
from claimledger.infrastructure.ledger_client import HttpLedgerClient, LedgerClient
from claimledger.infrastructure.price_client import HttpPriceSource, PriceSource
from claimledger.infrastructure.store import LedgerStore, PostgresLedgerStore
from claimledger.utils.clock import Clock, SystemClock
from claimledger.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class Engine:
    settings: Settings
    store: LedgerStore
    ledger: LedgerClient
    service: ClaimSettlementService
    reconciler: SettlementReconciler
    rate_limiter: FixedWindowRateLimiter
    deduplicator: RequestDeduplicator
    caches: dict = field(default_factory=dict)
    closers: List[Callable[[], Awaitable[Any]]] = field(default_factory=list)

    def cache_sizes(self) -> dict:
        return {name: len(cache) for name, cache in self.caches.items()}

    async def aclose(self) -> None:
        for close in reversed(self.closers):
            await close()
        self.closers.clear()


def assemble_engine(
    settings: Settings,
    store: LedgerStore,
    ledger: LedgerClient,
    price_source: PriceSource,
    escrow_client: Optional[EscrowClient] = None,
    clock: Optional[Clock] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Engine:
    clock = clock or SystemClock()
    escrow_store = InMemoryKeyedStore(clock, purge_every=settings.keyed_store_purge_every)
    price_store = InMemoryKeyedStore(clock, purge_every=settings.keyed_store_purge_every)
    limiter_store = InMemoryKeyedStore(clock, purge_every=settings.keyed_store_purge_every)
    dedup_store = InMemoryKeyedStore(clock, purge_every=settings.keyed_store_purge_every)

    escrow_cache = None
    if escrow_client is not None:
        escrow_cache = EscrowVestedCache(escrow_client, escrow_store, settings.escrow_cache_ttl_seconds)

    aggregator = ClaimableAggregator(
        store,
        VestingCalculator(escrow_cache),
        clock,
        token_decimals=settings.token_decimals,
        display_decimals=settings.display_decimals,
    )
    fee_quoter = FeeQuoter(
        price_source,
        store,
        price_store,
        fee_account=settings.fee_account,
        native_decimals=settings.native_decimals,
        ttl_seconds=settings.price_cache_ttl_seconds,
        clock=clock,
    )
    supervisor = TransferSupervisor(
        ledger,
        max_attempts=settings.transfer_max_attempts,
        backoff_base=settings.transfer_backoff_base_seconds,
        backoff_max=settings.transfer_backoff_max_seconds,
        confirm_timeout=settings.confirmation_timeout_seconds,
        sleep=sleep,
    )
    service = ClaimSettlementService(
        store,
        aggregator,
        fee_quoter,
        ledger,
        supervisor,
        fee_account=settings.fee_account,
        clock=clock,
        history_page_size=settings.history_page_size,
        history_max_page_size=settings.history_max_page_size,
    )
    return Engine(
        settings=settings,
        store=store,
        ledger=ledger,
        service=service,
        reconciler=SettlementReconciler(store, ledger, settings.reconcile_grace_seconds, clock),
        rate_limiter=FixedWindowRateLimiter(
            limiter_store,
            window_seconds=settings.claim_rate_limit_window_seconds,
            max_requests=settings.claim_rate_limit_max,
            clock=clock,
        ),
        deduplicator=RequestDeduplicator(dedup_store, settings.dedup_ttl_seconds),
        caches={
            "escrow": escrow_store,
            "price": price_store,
            "rate_limit": limiter_store,
            "dedup": dedup_store,
        },
    )


async def build_engine(settings: Optional[Settings] = None) -> Engine:
    """Open the database pool and HTTP clients and assemble the engine."""
    settings = settings or get_settings()
    manager = PoolManager()
    pool = await manager.open_async_pool(
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        dsn=settings.dsn,
    )
    ledger = HttpLedgerClient(
        settings.ledger_rpc_url,
        settings.transfer_signer_url,
        token_mint=settings.token_mint,
        timeout=settings.http_timeout_seconds,
        poll_interval=settings.confirmation_poll_interval_seconds,
    )
    price_source = HttpPriceSource(
        settings.price_primary_url,
        settings.price_fallback_url,
        settings.price_feed_id,
        fallback_asset=settings.price_fallback_asset,
        timeout=settings.http_timeout_seconds,
    )
    escrow_client = None
    if settings.escrow_api_url:
        escrow_client = HttpEscrowClient(settings.escrow_api_url, timeout=settings.http_timeout_seconds)
    else:
        log.info("[ESCROW] No escrow API configured, escrow-backed pools use schedule math")

    engine = assemble_engine(
        settings,
        PostgresLedgerStore(pool, default_fee_usd=settings.claim_fee_usd),
        ledger,
        price_source,
        escrow_client,
    )
    engine.closers.append(manager.close_async_pool)
    engine.closers.append(ledger.aclose)
    engine.closers.append(price_source.aclose)
    if escrow_client is not None:
        engine.closers.append(escrow_client.aclose)
    return engine


__all__ = ["Engine", "assemble_engine", "build_engine"]
