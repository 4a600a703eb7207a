"""CLI command for building a topic briefing from an exported inbox."""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from alteris_briefing.clustering.preprocess import BatchPreprocessor
from alteris_briefing.config import load_config
from alteris_briefing.llm.client import LLMClient
from alteris_briefing.pipeline import BriefingPipeline, PipelineOptions
from alteris_briefing.reasoning.prompts import generate_briefing_opening
from alteris_briefing.session.store import SqliteLifecycleStore
from alteris_briefing.session.tracker import SessionTracker
from alteris_briefing.session.worker import BackgroundBatchWorker
from alteris_briefing.sources.json_file import JsonItemSource

console = Console()
logger = logging.getLogger(__name__)

PRIORITY_COLORS = {"high": "red", "medium": "yellow", "low": "dim"}


async def _drain_batches(reasoner, tracker: SessionTracker, remaining, opts: PipelineOptions) -> BackgroundBatchWorker:
    preprocessor = BatchPreprocessor(
        reasoner,
        vip_emails=opts.vip_emails,
        batch_size=opts.batch_size,
        sender_preferences=opts.sender_preferences,
        knowledge_entries=opts.knowledge_entries,
    )
    worker = BackgroundBatchWorker(preprocessor, tracker, remaining, vip_emails=opts.vip_emails)
    worker.start()
    await worker.wait()
    return worker


def _print_topics(tracker: SessionTracker, show_items: bool):
    table = Table(title=f"Briefing ({tracker.topic_count()} topics)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Topic", style="cyan", max_width=45)
    table.add_column("Priority", justify="center")
    table.add_column("Items", justify="right")
    table.add_column("Flagged", justify="right", style="red")

    for n, topic in enumerate(tracker.topics, start=1):
        color = PRIORITY_COLORS.get(topic.priority or "", "dim")
        table.add_row(
            str(n),
            topic.label,
            f"[{color}]{topic.priority or '-'}[/{color}]",
            str(topic.size),
            str(topic.flagged_count) if topic.flagged_count else "",
        )
        if show_items:
            for ref in topic.items:
                flag = "🚩 " if ref.is_flagged else ""
                table.add_row("", f"  {flag}{ref.subject}", "", "", f"[dim]{ref.sender}[/dim]")
                if ref.summary:
                    table.add_row("", f"   [dim]{ref.summary}[/dim]", "", "", "")
    console.print(table)


@click.command("brief")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--provider", type=click.Choice(["gemini", "claude", "ollama", "none"]), default=None,
              help="LLM for topic clustering; 'none' uses heuristic clustering (default from config)")
@click.option("--model", default=None, help="Override model name")
@click.option("--hours", type=int, default=None, help="Hours of history to look back (default from config)")
@click.option("--all", "include_all", is_flag=True, help="Ignore the lookback window")
@click.option("--user", "user_id", default=None, help="Skip items already briefed for this user and record this run")
@click.option("--items", "show_items", is_flag=True, help="List the items under each topic")
@click.pass_context
def brief(ctx, file, provider, model, hours, include_all, user_id, show_items):
    """Cluster the items in FILE into a prioritized briefing.

    Examples:

        alteris-briefing brief inbox.json --provider none --all

        alteris-briefing brief inbox.json --user me@example.com --items
    """
    cfg = load_config((ctx.obj or {}).get("config_path"))
    provider = provider or cfg.provider
    user_id = user_id or cfg.user_id

    reasoner = None
    if provider != "none":
        try:
            reasoner = LLMClient(provider=provider, model=model or cfg.model)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
        console.print(f"[dim]Using {reasoner.provider} / {reasoner.model}[/dim]")

    overrides = {}
    if hours is not None:
        overrides["lookback_hours"] = hours
    if include_all:
        overrides["since"] = datetime.fromtimestamp(0, tz=timezone.utc)
    opts = PipelineOptions.from_config(cfg, **overrides)

    store = SqliteLifecycleStore(cfg.db_path) if user_id else None
    source = JsonItemSource.from_file(Path(file))
    result = BriefingPipeline(source, store=store, reasoner=reasoner, options=opts).run(user_id)
    briefing = result.briefing

    if not briefing.topics:
        console.print(f"[yellow]Nothing to brief.[/yellow] {briefing.total_fetched} items fetched, none left after filtering.")
        if store is not None:
            store.close()
        return

    tracker = SessionTracker(briefing.topics, store=store, user_id=user_id)
    if result.remaining_batches:
        console.print(f"[dim]Resolving {len(result.remaining_batches)} more batches...[/dim]")
        worker = asyncio.run(_drain_batches(reasoner, tracker, result.remaining_batches, opts))
        if worker.failed:
            console.print(f"[yellow]{worker.failed} batches fell back to heuristic topics[/yellow]")

    opening = generate_briefing_opening(
        tracker.get_progress().total_emails, [t.label for t in tracker.topics], cfg.user_name,
    )
    console.print()
    console.print(f"[italic]{opening}[/italic]")
    console.print()
    _print_topics(tracker, show_items)
    if briefing.triage_summary:
        console.print(f"[dim]Triage: {briefing.triage_summary}[/dim]")
    console.print(
        f"[bold green]Done.[/bold green] {briefing.total_fetched} fetched, "
        f"{tracker.get_progress().total_emails} briefed in {tracker.topic_count()} topics "
        f"({briefing.duration_ms}ms)"
    )

    if store is not None:
        for topic in tracker.topics:
            for ref in topic.items:
                tracker.mark_briefed(ref.email_id)
        flushed = tracker.flush_to_store()
        tracker.close()
        store.close()
        console.print(f"[green]✓[/green] Recorded {flushed} items as briefed for {user_id}")
