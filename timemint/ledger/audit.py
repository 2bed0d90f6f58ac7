"""
Audit Trail Verifier — offline check of the persisted audit chain.

Reads the SQL mirror written by ``AuditStore``, recomputes every hash from
genesis and reports:

- how many events of each type were recorded,
- the head of the chain (sequence and hash),
- the first event that breaks the chain, if any,
- optionally, the most recent events.

Usage:
    timemint-audit
    timemint-audit --database-url sqlite:///timemint_audit.db
    timemint-audit --verbose --limit 50
"""

from __future__ import annotations

import argparse
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from timemint.config import settings
from timemint.core.schema import AuditEvent
from timemint.ledger.service import AuditStore

console = Console()


def _summary_table(store: AuditStore) -> Table:
    table = Table(title="Recorded events", show_footer=True)
    counts = store.count_by_type()
    table.add_column("Event type", style="green", footer="total")
    table.add_column("Count", justify="right", footer=str(sum(counts.values())))
    for event_type, count in counts.items():
        table.add_row(event_type, str(count))
    return table


def _event_table(events: list[AuditEvent]) -> Table:
    table = Table(show_lines=True)
    table.add_column("Seq", style="cyan", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Type", style="green")
    table.add_column("Caller", style="yellow")
    table.add_column("Payload")
    table.add_column("Hash", style="dim")
    for event in events:
        table.add_row(
            str(event.sequence_number),
            str(event.timestamp),
            event.event_type.value,
            event.caller or "-",
            "\n".join(f"{key}={value}" for key, value in sorted(event.payload.items())),
            event.event_hash[:16],
        )
    return table


def run_audit(database_url: str, verbose: bool = False, limit: int = 20) -> bool:
    """
    Verify the audit chain stored at ``database_url``.

    Args:
        database_url: SQLAlchemy connection string of the audit store.
        verbose: Also list the ``limit`` most recent events.
        limit: Number of events shown in verbose mode.

    Returns:
        True if the chain is intact (an empty store counts as intact).
    """
    store = AuditStore(database_url)
    store.initialize()

    events = store.load_events()
    if not events:
        console.print(Panel("No events recorded", title="timemint audit", style="yellow"))
        return True

    console.print(_summary_table(store))

    is_valid, position, message = store.verify_chain()
    head = events[-1]
    if is_valid:
        body = (
            f"[bold green]chain intact[/bold green]\n"
            f"head: seq {head.sequence_number} hash {head.event_hash[:16]}..."
        )
        console.print(Panel(body, title="timemint audit", style="green"))
    else:
        console.print(
            Panel(f"[bold red]chain broken[/bold red]\n{message}", title="timemint audit", style="red")
        )
        console.print(_event_table(events[position:position + 1]))

    if verbose:
        console.print(_event_table(store.get_latest_events(limit=limit)))

    return is_valid


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify the timemint audit chain")
    parser.add_argument(
        "--database-url",
        default=settings.audit_database_url,
        help="SQLAlchemy connection string (default: TIMEMINT_AUDIT_DATABASE_URL)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="List recent events")
    parser.add_argument("--limit", type=int, default=20, help="Events listed with --verbose")
    args = parser.parse_args()

    sys.exit(0 if run_audit(args.database_url, verbose=args.verbose, limit=args.limit) else 1)


if __name__ == "__main__":
    main()
