from __future__ import annotations

import asyncio
import sys
from typing import Awaitable, Callable, Optional, TypeVar

import typer
import uvicorn
from rich import box
from rich.console import Console
from rich.table import Table

from claimledger.bootstrap import Engine, build_engine
from claimledger.config import get_settings
from claimledger.domain.errors import ClaimLedgerError
from claimledger.domain.models import PoolState
from claimledger.domain.units import to_display
from claimledger.utils.logging import configure_logging

app = typer.Typer(help="Vesting Claim Ledger CLI.")
claims_app = typer.Typer(help="Global claim switch.")
pool_app = typer.Typer(help="Pool lifecycle transitions.")
app.add_typer(claims_app, name="claims")
app.add_typer(pool_app, name="pool")

console = Console()
T = TypeVar("T")


def _run(action: Callable[[Engine], Awaitable[T]]) -> T:
    """Build the engine, run ``action`` on it and always close it."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def _main() -> T:
        engine = await build_engine(settings)
        try:
            return await action(engine)
        finally:
            await engine.aclose()

    try:
        return asyncio.run(_main())
    except ClaimLedgerError as exc:
        console.print(f"[red]{exc.kind}[/red]: {exc.message}")
        raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"ledger={settings.ledger_rpc_url} signer={settings.transfer_signer_url} "
        f"escrow={settings.escrow_api_url or '-'} | "
        f"fee=${settings.claim_fee_usd} -> {settings.fee_account or '(unset)'} | "
        f"decimals={settings.token_decimals}/{settings.display_decimals}"
    )


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default from settings)."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (default from settings)."),
) -> None:
    """
    Run the HTTP API with uvicorn.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    uvicorn.run(
        "claimledger.api:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_config=None,
    )


@app.command()
def summary(
    wallet: str = typer.Argument(..., help="Wallet address."),
    pool_id: Optional[str] = typer.Option(None, "--pool", help="Restrict to one pool."),
) -> None:
    """
    Show vested, claimed and claimable balances for a wallet.
    """
    balance = _run(lambda engine: engine.service.summary(wallet, pool_id=pool_id))
    decimals = get_settings().token_decimals

    table = Table(title=f"Vesting summary for {wallet}", box=box.ROUNDED)
    table.add_column("Pool", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Vested %", justify="right")
    table.add_column("Vested", justify="right", style="green")
    table.add_column("Claimed", justify="right", style="magenta")
    table.add_column("Reserved", justify="right")
    table.add_column("Claimable", justify="right", style="bold green")
    table.add_column("Locked", justify="right", style="yellow")
    table.add_column("Source")
    for b in balance.allocations:
        table.add_row(
            b.pool.name or b.pool.id,
            b.pool.state.value,
            f"{b.vested_fraction * 100:.2f}",
            str(to_display(b.vested, decimals)),
            str(to_display(b.claimed, decimals)),
            str(to_display(b.reserved, decimals)),
            str(to_display(b.claimable, decimals)),
            str(to_display(b.locked, decimals)),
            b.source.value,
        )
    console.print(table)
    console.print(f"Available to claim: [bold]{to_display(balance.total_available, decimals)}[/bold]")


@app.command()
def history(
    wallet: str = typer.Argument(..., help="Wallet address."),
    page: int = typer.Option(1, "--page", min=1),
    limit: Optional[int] = typer.Option(None, "--limit", min=1),
) -> None:
    """
    List claim receipts for a wallet, newest first.
    """
    result = _run(lambda engine: engine.service.history(wallet, page=page, limit=limit))
    decimals = get_settings().token_decimals

    table = Table(
        title=f"Claims for {wallet}",
        box=box.ROUNDED,
        caption=f"page {result.page}, {result.total} total",
    )
    table.add_column("Claimed at", no_wrap=True)
    table.add_column("Pool", style="cyan")
    table.add_column("Amount", justify="right", style="bold green")
    table.add_column("Transfer tx")
    for entry in result.items:
        table.add_row(
            entry.record.claimed_at.isoformat(),
            entry.pool_name or entry.pool_id or "-",
            str(to_display(entry.record.amount_claimed, decimals)),
            entry.record.transfer_tx_id,
        )
    console.print(table)


@app.command()
def reconcile(
    fail_unsubmitted: bool = typer.Option(
        False,
        "--fail-unsubmitted",
        help="Mark settlements with no submitted transfer as failed instead of flagging them.",
    ),
) -> None:
    """
    Settle stuck settlements against the ledger.
    """
    report = _run(lambda engine: engine.reconciler.run(fail_unsubmitted=fail_unsubmitted))
    table = Table(title="Reconciliation", box=box.ROUNDED)
    table.add_column("Outcome", style="cyan")
    table.add_column("Fee transactions")
    table.add_row("recorded", ", ".join(report.recorded) or "-")
    table.add_row("failed", ", ".join(report.failed) or "-")
    table.add_row("still pending", ", ".join(report.pending) or "-")
    table.add_row("needs review", ", ".join(report.needs_review) or "-")
    table.add_row("errored", ", ".join(report.errored) or "-")
    console.print(table)


@claims_app.command("enable")
def claims_enable() -> None:
    """Allow new claims."""
    _run(lambda engine: engine.store.set_claims_enabled(True))
    typer.echo("Claims enabled.")


@claims_app.command("disable")
def claims_disable() -> None:
    """Reject new claims with 403."""
    _run(lambda engine: engine.store.set_claims_enabled(False))
    typer.echo("Claims disabled.")


def _transition(pool_id: str, state: PoolState) -> None:
    pool = _run(lambda engine: engine.store.set_pool_state(pool_id, state))
    typer.echo(f"Pool {pool.id} is now {pool.state.value}.")


@pool_app.command("pause")
def pool_pause(pool_id: str = typer.Argument(...)) -> None:
    """Stop claims against a pool; vesting keeps accruing."""
    _transition(pool_id, PoolState.PAUSED)


@pool_app.command("resume")
def pool_resume(pool_id: str = typer.Argument(...)) -> None:
    _transition(pool_id, PoolState.ACTIVE)


@pool_app.command("cancel")
def pool_cancel(
    pool_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Cancel a pool permanently."""
    if not yes:
        typer.confirm(f"Cancel pool {pool_id}? This cannot be undone", abort=True)
    _transition(pool_id, PoolState.CANCELLED)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
