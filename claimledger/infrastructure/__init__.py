"""
Infrastructure package for the claim ledger.

Centralizes I/O concerns: PostgreSQL pooling and the ledger store, HTTP
clients for the distributed ledger, price oracles and escrow protocol, and the
process-local keyed TTL store. Keep this layer focused on I/O and resource
management, decoupled from vesting and settlement logic.
"""

from claimledger.infrastructure.db_factory import PoolManager, build_dsn, get_sync_connection
from claimledger.infrastructure.escrow_client import EscrowClient, HttpEscrowClient
from claimledger.infrastructure.keyed_store import InMemoryKeyedStore, KeyedStore
from claimledger.infrastructure.ledger_client import (
    HttpLedgerClient,
    LedgerClient,
    TransferSubmissionError,
)
from claimledger.infrastructure.price_client import HttpPriceSource, PriceSource
from claimledger.infrastructure.store import LedgerStore, PostgresLedgerStore

__all__ = [
    "PoolManager",
    "build_dsn",
    "get_sync_connection",
    "EscrowClient",
    "HttpEscrowClient",
    "InMemoryKeyedStore",
    "KeyedStore",
    "HttpLedgerClient",
    "LedgerClient",
    "TransferSubmissionError",
    "HttpPriceSource",
    "PriceSource",
    "LedgerStore",
    "PostgresLedgerStore",
]
