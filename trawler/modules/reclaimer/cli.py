"""
Rent Trawler CLI
================
Command-line interface using Typer + Rich.

Commands:
    trawler scan OWNER
    trawler close [OWNER] [--live] [--limit N] [--strict]
    trawler stats

`close` is a dry run unless --live is given: it scans, plans and compiles
the transactions, then stops before signing.
"""

import asyncio
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from trawler.config.settings import Settings
from trawler.modules.reclaimer.config import TOKEN_2022_PROGRAM_ID, ReclaimConfig
from trawler.modules.reclaimer.engine import ReclaimEngine
from trawler.modules.reclaimer.models import CandidateAccount, ClosureOutcome, ProgressEvent, ScanReport
from trawler.shared.errors import TrawlerError
from trawler.shared.infrastructure.ledger_client import LedgerClient
from trawler.shared.infrastructure.signer import KeypairSigner
from trawler.shared.infrastructure.stats_recorder import HttpStatsRecorder

app = typer.Typer(
    name="trawler",
    help="Rent Trawler - reclaim SOL locked in empty token accounts",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


def _short(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}" if len(address) > 12 else address


def _program_label(program_id: str) -> str:
    return "Token-2022" if program_id == TOKEN_2022_PROGRAM_ID else "Token"


def _candidates_table(candidates: List[CandidateAccount]) -> Table:
    table = Table(title="Closable Accounts", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Account", style="cyan")
    table.add_column("Mint", style="dim")
    table.add_column("Program")
    table.add_column("Rent (SOL)", justify="right", style="green")
    for i, c in enumerate(candidates, 1):
        table.add_row(str(i), _short(c.address), _short(c.mint), _program_label(c.owning_program), f"{c.rent_sol:.6f}")
    return table


def _report_panel(report: ScanReport, capacity: int) -> Panel:
    return Panel.fit(
        f"[bold cyan]🔍 Wallet {_short(report.owner)}[/bold cyan]\n"
        f"Token accounts: {report.total_accounts} | Closable: {len(report.candidates)} | "
        f"Not closable: {len(report.skipped)}\n"
        f"Recoverable: [bold green]{report.recoverable_sol:.6f} SOL[/bold green] | "
        f"Transactions required: {report.batch_count(capacity)}",
        border_style="cyan",
    )


def _outcome_table(outcome: ClosureOutcome) -> Table:
    table = Table(title="Batch Results")
    table.add_column("Batch", justify="right")
    table.add_column("Status")
    table.add_column("Accounts", justify="right")
    table.add_column("Rent (SOL)", justify="right")
    table.add_column("Signature", style="dim")
    table.add_column("Note", style="dim")
    styles = {"confirmed": "green", "assumed_confirmed": "yellow", "failed": "red"}
    for r in outcome.batch_results:
        style = styles.get(r.status.value, "white")
        table.add_row(
            str(r.batch_id),
            f"[{style}]{r.status.value}[/{style}]",
            str(r.accounts_in_batch),
            f"{r.rent_lamports_in_batch / 1e9:.6f}",
            _short(r.handle or "-"),
            r.reason,
        )
    return table


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: SCAN
# ═══════════════════════════════════════════════════════════════════════════════

@app.command()
def scan(
    owner: str = typer.Argument(..., help="Wallet address to scan"),
):
    """
    List the empty token accounts of a wallet and the rent they lock.

    \b
    Examples:
        trawler scan 7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU
    """
    config = ReclaimConfig()

    async def run_scan() -> ScanReport:
        async with LedgerClient() as ledger:
            return await ReclaimEngine(ledger, config=config).scan_report(owner)

    try:
        report = asyncio.run(run_scan())
    except TrawlerError as e:
        console.print(f"[bold red]❌ Scan failed: {e}[/bold red]")
        raise typer.Exit(1)

    console.print(_report_panel(report, config.ACCOUNTS_PER_TX))
    if report.candidates:
        console.print(_candidates_table(report.candidates))
    for s in report.skipped:
        console.print(f"[yellow]⚠️  {_short(s.address)} skipped: {s.reason}[/yellow]")


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: CLOSE
# ═══════════════════════════════════════════════════════════════════════════════

@app.command()
def close(
    owner: Optional[str] = typer.Argument(None, help="Wallet address (defaults to the SOLANA_PRIVATE_KEY wallet)"),
    live: bool = typer.Option(False, "--live", help="Sign and broadcast (default is a dry run)"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Close at most N accounts"),
    strict: bool = typer.Option(False, "--strict", help="Count unconfirmable batches as failed"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """
    Close empty token accounts and reclaim their rent.

    [bold red]⚠️  --live signs and broadcasts real transactions![/bold red]

    \b
    Examples:
        trawler close 7xKX...
        trawler close --live
        trawler close --live --limit 22 --strict
    """
    config = ReclaimConfig(OPTIMISTIC_ON_AMBIGUITY=not strict)
    dry_run = config.DRY_RUN_DEFAULT and not live

    signer = None
    if live or owner is None:
        try:
            signer = KeypairSigner.from_env()
        except ValueError as e:
            console.print(f"[bold red]❌ {e}[/bold red]")
            raise typer.Exit(1)
        if owner is None:
            owner = signer.pubkey

    mode = "[green]DRY RUN[/green]" if dry_run else "[bold red]LIVE[/bold red]"
    policy = "strict" if strict else "optimistic"
    console.print(Panel.fit(
        f"[bold yellow]🎣 Rent Trawler[/bold yellow]\n"
        f"Wallet: {_short(owner)} | Mode: {mode} | Ambiguity: {policy}",
        border_style="yellow",
    ))

    def on_progress(event: ProgressEvent) -> None:
        console.print(f"[dim]  {event.closed_count}/{event.total_count} accounts closed[/dim]")

    async def run_close() -> Optional[ClosureOutcome]:
        recorder = HttpStatsRecorder() if Settings.STATS_URL else None
        async with LedgerClient() as ledger:
            engine = ReclaimEngine(
                ledger,
                signer=signer.as_variant() if signer is not None else None,
                config=config,
                recorder=recorder,
            )
            report = await engine.scan_report(owner)
            console.print(_report_panel(report, config.ACCOUNTS_PER_TX))

            selected = report.candidates[:limit] if limit else report.candidates
            if not selected:
                console.print("[green]✅ Nothing to close.[/green]")
                return None

            batches = engine.plan(selected)
            if dry_run:
                transactions = await engine.preview(batches, owner)
                console.print(_candidates_table(selected))
                console.print(
                    f"\n[dim]DRY RUN: {len(transactions)} transactions compiled, nothing signed or sent. "
                    f"Use --live to close.[/dim]\n"
                )
                return None

            if not yes and not typer.confirm(
                f"\n⚠️  Close {len(selected)} accounts in {len(batches)} transactions?", default=False
            ):
                console.print("[yellow]Aborted.[/yellow]")
                return None

            outcome = await engine.close(selected, owner, on_progress=on_progress)
            await engine.flush()
            return outcome

    try:
        outcome = asyncio.run(run_close())
    except TrawlerError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise typer.Exit(1)

    if outcome is None:
        return

    console.print(_outcome_table(outcome))
    console.print(Panel.fit(
        f"[bold green]💰 Closed {outcome.total_accounts_closed} accounts, "
        f"recovered {outcome.total_sol_recovered:.6f} SOL[/bold green]",
        border_style="green",
    ))
    if outcome.assumed_batches:
        console.print("[yellow]Some batches could not be confirmed. Run `trawler scan` again to verify.[/yellow]")
    if outcome.failed_batches:
        raise typer.Exit(2)


# ═══════════════════════════════════════════════════════════════════════════════
# COMMAND: STATS
# ═══════════════════════════════════════════════════════════════════════════════

@app.command()
def stats():
    """
    Show platform-wide totals from the stats store (STATS_URL).
    """
    if not Settings.STATS_URL:
        console.print("[bold red]❌ STATS_URL is not configured[/bold red]")
        raise typer.Exit(1)

    try:
        fleet = asyncio.run(HttpStatsRecorder().read())
    except Exception as e:
        console.print(f"[bold red]❌ Could not read stats: {e}[/bold red]")
        raise typer.Exit(1)

    console.print(Panel.fit(
        f"[bold cyan]📋 Fleet Stats[/bold cyan]\n"
        f"Total reclaimed: [green]{fleet.total_sol:.4f} SOL[/green]\n"
        f"Claims: {fleet.total_claims} | Accounts closed: {fleet.total_accounts}",
        border_style="cyan",
    ))


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def main():
    """Entry point for CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Already-broadcast transactions may still land; re-scan to check.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
