"""
Demo data seeding for the vesting claim ledger.

Generates deterministic pseudo-random pools and allocations, writes them as
CSV, and loads them into Postgres with COPY. Optionally applies `db/init.sql`
first.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Tuple

import psycopg
import typer

from claimledger.infrastructure.db_factory import build_dsn, get_sync_connection

app = typer.Typer(help="Generate demo pools and allocations and load them into Postgres (CSV + COPY).")

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "db" / "init.sql"

POOL_COLUMNS = ["id", "name", "total_amount", "start_time", "cliff_duration", "vesting_duration", "state"]
ALLOCATION_COLUMNS = [
    "id",
    "pool_id",
    "wallet",
    "token_amount",
    "share_percentage",
    "is_active",
    "is_cancelled",
    "created_at",
]


def _wallet(rng: random.Random) -> str:
    alphabet = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
    return "".join(rng.choice(alphabet) for _ in range(44))


def _generate(
    pools: int, wallets: int, per_pool: int, decimals: int, seed: int
) -> Tuple[List[List[str]], List[List[str]]]:
    """
    Build pool and allocation rows.

    Allocation sizes are drawn first and the pool total is their sum, so the
    sum of a pool's allocations never exceeds its total.
    """
    rng = random.Random(seed)
    now = datetime.now(timezone.utc).replace(microsecond=0)
    wallet_ids = [_wallet(rng) for _ in range(wallets)]
    unit = 10**decimals

    pool_rows: List[List[str]] = []
    allocation_rows: List[List[str]] = []
    for p in range(pools):
        pool_id = f"pool-{p + 1:04d}"
        start = now - timedelta(days=rng.randint(0, 180))
        vesting_days = rng.choice([30, 90, 180, 365])
        cliff_days = rng.choice([0, 0, 7, 30])
        members = rng.sample(wallet_ids, k=min(per_pool, len(wallet_ids)))
        amounts = [rng.randint(100, 100_000) * unit for _ in members]
        total = sum(amounts)
        pool_rows.append(
            [
                pool_id,
                f"Campaign {p + 1}",
                str(total),
                start.isoformat(),
                str(cliff_days * 86_400),
                str(vesting_days * 86_400),
                "active",
            ]
        )
        for i, (wallet, amount) in enumerate(zip(members, amounts)):
            share = (Decimal(amount) * 100 / Decimal(total)).quantize(Decimal("0.0001"))
            allocation_rows.append(
                [
                    f"{pool_id}-alloc-{i + 1:05d}",
                    pool_id,
                    wallet,
                    str(amount),
                    str(share),
                    "t",
                    "f",
                    (start + timedelta(seconds=i)).isoformat(),
                ]
            )
    return pool_rows, allocation_rows


def _write_csv(path: Path, header: List[str], rows: List[List[str]]) -> None:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)


def _copy_csv(conn: psycopg.Connection, table: str, columns: List[str], csv_path: Path) -> None:
    with conn.cursor() as cur:
        with cur.copy(
            f"COPY public.{table} ({', '.join(columns)}) FROM STDIN WITH (FORMAT csv, HEADER TRUE)"
        ) as copy:
            with csv_path.open("r", encoding="utf-8") as f:
                for line in f:
                    copy.write(line)


def apply_schema(dsn: str) -> None:
    with get_sync_connection(dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        conn.commit()


def load(dsn: str, pools_csv: Path, allocations_csv: Path) -> None:
    with get_sync_connection(dsn) as conn:
        _copy_csv(conn, "pool", POOL_COLUMNS, pools_csv)
        _copy_csv(conn, "allocation", ALLOCATION_COLUMNS, allocations_csv)
        conn.commit()


@app.command()
def main(
    pools: int = typer.Option(5, "--pools", "-p", help="Number of pools to generate."),
    wallets: int = typer.Option(200, "--wallets", "-w", help="Size of the wallet universe."),
    per_pool: int = typer.Option(50, "--per-pool", help="Allocations per pool."),
    decimals: int = typer.Option(9, "--decimals", help="Token decimals for base-unit amounts."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Directory for the CSV files (temp dir if omitted)."
    ),
    dsn: Optional[str] = typer.Option(None, "--dsn", help="Optional DSN override for Postgres."),
    init_schema: bool = typer.Option(False, "--init-schema", help="Apply db/init.sql before loading."),
    no_load: bool = typer.Option(False, "--no-load", help="Only generate CSV; skip loading into Postgres."),
) -> None:
    """
    Generate demo pools and allocations and optionally load them using COPY.
    """
    start = time.perf_counter()
    out_dir = output or Path(tempfile.mkdtemp(prefix="claimledger_seed_"))
    out_dir.mkdir(parents=True, exist_ok=True)
    pools_csv = out_dir / "pools.csv"
    allocations_csv = out_dir / "allocations.csv"

    pool_rows, allocation_rows = _generate(pools, wallets, per_pool, decimals, seed)
    _write_csv(pools_csv, POOL_COLUMNS, pool_rows)
    _write_csv(allocations_csv, ALLOCATION_COLUMNS, allocation_rows)
    typer.echo(
        f"Generated {len(pool_rows)} pools and {len(allocation_rows)} allocations -> {out_dir} "
        f"in {time.perf_counter() - start:.2f}s"
    )

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    conn_dsn = dsn or build_dsn()
    if init_schema:
        apply_schema(conn_dsn)
        typer.echo("Schema applied.")
    load_start = time.perf_counter()
    load(conn_dsn, pools_csv, allocations_csv)
    typer.echo(f"Load completed in {time.perf_counter() - load_start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
