"""CLI commands for the briefed-item lifecycle store."""

from __future__ import annotations

import logging
from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from alteris_briefing.config import load_config
from alteris_briefing.session.store import VALID_STATUSES, SqliteLifecycleStore

console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {"briefed": "cyan", "actioned": "green", "skipped": "dim"}


@click.command("history")
@click.argument("user_id")
@click.option("--status", type=click.Choice(VALID_STATUSES), default=None, help="Only show this status")
@click.option("--limit", default=50, help="Max rows to show")
@click.option("--purge", is_flag=True, help="Delete records older than the retention window first")
@click.pass_context
def history(ctx, user_id, status, limit, purge):
    """Show items recorded as briefed, actioned or skipped for USER_ID.

    Records expire after seven days.
    """
    cfg = load_config((ctx.obj or {}).get("config_path"))
    store = SqliteLifecycleStore(cfg.db_path)
    try:
        if purge:
            removed = store.purge_expired()
            console.print(f"[dim]Purged {removed} expired records[/dim]")
        records = store.get_all(user_id)
    finally:
        store.close()

    rows = [(eid, r) for eid, r in records.items() if status is None or r.status == status]
    if not rows:
        console.print(f"[yellow]No lifecycle records for {user_id}.[/yellow]")
        return

    rows.sort(key=lambda row: row[1].timestamp, reverse=True)
    table = Table(title=f"Lifecycle for {user_id}")
    table.add_column("Item", style="cyan", max_width=40)
    table.add_column("Status", justify="center")
    table.add_column("Action", style="dim")
    table.add_column("When", style="dim")

    for email_id, record in rows[:limit]:
        style = STATUS_STYLES.get(record.status, "")
        when = datetime.fromtimestamp(record.timestamp).strftime("%Y-%m-%d %H:%M")
        table.add_row(email_id, f"[{style}]{record.status}[/{style}]", record.action or "", when)

    console.print(table)
    counts = {s: sum(1 for _, r in rows if r.status == s) for s in VALID_STATUSES}
    console.print("  ".join(f"{s}: [bold]{n}[/bold]" for s, n in counts.items()))
