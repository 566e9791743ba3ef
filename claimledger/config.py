"""
Configuration settings for the vesting claim ledger.

Uses Pydantic Settings to load environment variables for database connections,
external services (ledger RPC, transfer signer, price oracles, escrow API),
cache/limiter windows and the transfer supervisor's retry budget.
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("claim_ledger", alias="DB_NAME")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(10, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")

    # Token units
    token_decimals: int = Field(9, alias="TOKEN_DECIMALS")
    display_decimals: int = Field(2, alias="DISPLAY_DECIMALS")
    native_decimals: int = Field(9, alias="NATIVE_DECIMALS")

    # Accounts
    fee_account: str = Field("", alias="FEE_ACCOUNT")
    treasury_account: str = Field("", alias="TREASURY_ACCOUNT")
    token_mint: str = Field("", alias="TOKEN_MINT")

    # External services
    ledger_rpc_url: str = Field("http://localhost:8899", alias="LEDGER_RPC_URL")
    transfer_signer_url: str = Field("http://localhost:8700", alias="TRANSFER_SIGNER_URL")
    escrow_api_url: Optional[str] = Field(None, alias="ESCROW_API_URL")
    price_primary_url: str = Field(
        "https://hermes.pyth.network/v2/updates/price/latest", alias="PRICE_PRIMARY_URL"
    )
    price_fallback_url: str = Field(
        "https://api.coingecko.com/api/v3/simple/price", alias="PRICE_FALLBACK_URL"
    )
    price_feed_id: str = Field(
        "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
        alias="PRICE_FEED_ID",
    )
    price_fallback_asset: str = Field("solana", alias="PRICE_FALLBACK_ASSET")
    http_timeout_seconds: float = Field(10.0, alias="HTTP_TIMEOUT_SECONDS")

    # Fees
    claim_fee_usd: Decimal = Field(Decimal("10.00"), alias="CLAIM_FEE_USD")

    # Caches and limiters
    escrow_cache_ttl_seconds: float = Field(30.0, alias="ESCROW_CACHE_TTL_SECONDS")
    price_cache_ttl_seconds: float = Field(10.0, alias="PRICE_CACHE_TTL_SECONDS")
    claim_rate_limit_window_seconds: float = Field(10.0, alias="CLAIM_RATE_LIMIT_WINDOW_SECONDS")
    claim_rate_limit_max: int = Field(1, alias="CLAIM_RATE_LIMIT_MAX")
    dedup_ttl_seconds: float = Field(60.0, alias="DEDUP_TTL_SECONDS")
    keyed_store_purge_every: int = Field(256, alias="KEYED_STORE_PURGE_EVERY")

    # Transfer supervisor
    transfer_max_attempts: int = Field(3, alias="TRANSFER_MAX_ATTEMPTS")
    transfer_backoff_base_seconds: float = Field(1.0, alias="TRANSFER_BACKOFF_BASE_SECONDS")
    transfer_backoff_max_seconds: float = Field(5.0, alias="TRANSFER_BACKOFF_MAX_SECONDS")
    confirmation_timeout_seconds: float = Field(30.0, alias="CONFIRMATION_TIMEOUT_SECONDS")
    confirmation_poll_interval_seconds: float = Field(
        2.0, alias="CONFIRMATION_POLL_INTERVAL_SECONDS"
    )

    # History and reconciliation
    history_page_size: int = Field(20, alias="HISTORY_PAGE_SIZE")
    history_max_page_size: int = Field(100, alias="HISTORY_MAX_PAGE_SIZE")
    reconcile_grace_seconds: float = Field(120.0, alias="RECONCILE_GRACE_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
