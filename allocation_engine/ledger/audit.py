"""
Journal Audit Tool — independent verification of a SQL-backed deployment.

Connects directly to the state database, recomputes every hash of the audit
journal, and prints the system switches and the registered resource pools
with their supply accounting.

Usage:
    allocation-audit --database-url sqlite:///allocations.db
    allocation-audit --verbose
"""

from __future__ import annotations

import argparse
import sys
import time

from rich.console import Console
from rich.table import Table

from allocation_engine.config import settings
from allocation_engine.core.clock import WallClock
from allocation_engine.core.schema import ResourceType, SystemState
from allocation_engine.ledger.journal import AuditJournal
from allocation_engine.ledger.store import RESOURCES, SYSTEM, SYSTEM_STATE_KEY, SqlStateStore

console = Console()


def run_audit(database_url: str, verbose: bool = False) -> bool:
    """
    Run a full journal integrity audit.

    Args:
        database_url: SQLAlchemy connection string.
        verbose: Print the full journal listing if True.

    Returns:
        True if the journal chain is valid and every pool's supply is consistent.
    """
    console.print("\n[bold blue]═══ Allocation Journal Audit ═══[/bold blue]\n")

    store = SqlStateStore(database_url)
    store.initialize()
    journal = AuditJournal(store, WallClock())

    raw_state = store.get(SYSTEM, SYSTEM_STATE_KEY)
    if raw_state is not None:
        state = SystemState.model_validate(raw_state)
        console.print(
            f"  Administrator: [bold]{state.administrator}[/bold]  "
            f"initialized={state.initialized} frozen={state.frozen} "
            f"maintenance={state.maintenance} ceiling={state.global_allocation_ceiling}"
        )

    count = journal.entry_count()
    console.print(f"  Entries in journal: [bold]{count}[/bold]")
    if count == 0:
        console.print("[yellow]⚠ Journal is empty — no entries to verify[/yellow]")
        return True

    console.print("  Verifying hash chain...", end=" ")
    start_time = time.time()
    is_valid, entries_verified, message = journal.verify_chain()
    elapsed = time.time() - start_time

    if is_valid:
        console.print("[bold green]✓ VALID[/bold green]")
        console.print(f"  Entries verified: [bold]{entries_verified}[/bold]")
        console.print(f"  Verification time: {elapsed:.3f}s")
    else:
        console.print("[bold red]✗ INVALID[/bold red]")
        console.print(f"  Failure at entry: {entries_verified}")
        console.print(f"  Reason: {message}")

    resources = sorted(
        (ResourceType.model_validate(v) for v in store.values(RESOURCES)),
        key=lambda r: r.id,
    )
    supply_ok = True
    if resources:
        table = Table(title="Resource pools")
        table.add_column("Id", style="cyan", width=6)
        table.add_column("Name", style="green")
        table.add_column("Available / Total", justify="right")
        table.add_column("Price", justify="right")
        table.add_column("Frozen", width=8)
        for resource in resources:
            if not 0 <= resource.available_supply <= resource.total_supply:
                supply_ok = False
            table.add_row(
                str(resource.id),
                resource.name,
                f"{resource.available_supply} / {resource.total_supply}",
                str(resource.price_per_unit),
                "YES" if resource.frozen else "—",
            )
        console.print(table)
        if not supply_ok:
            console.print("[bold red]✗ Supply accounting inconsistent[/bold red]")

    if verbose:
        console.print("\n[bold]Detailed Entry Listing:[/bold]")
        table = Table(show_lines=True)
        table.add_column("Seq", style="cyan", width=6)
        table.add_column("Type", style="green", width=24)
        table.add_column("Actor", style="yellow", width=20)
        table.add_column("Hash (first 16)", style="dim", width=18)
        table.add_column("At", width=12)

        for entry in journal.entries():
            table.add_row(
                str(entry.sequence_number),
                entry.event_type.value,
                entry.actor,
                entry.entry_hash[:16] + "...",
                str(entry.recorded_at),
            )
        console.print(table)

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return is_valid and supply_ok


def main() -> None:
    parser = argparse.ArgumentParser(description="Allocation engine journal auditor")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed entry listing",
    )
    args = parser.parse_args()

    db_url = args.database_url or settings.database_url
    if not db_url:
        parser.error("a database URL is required (--database-url or ALLOC_DATABASE_URL)")
    is_valid = run_audit(db_url, verbose=args.verbose)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
