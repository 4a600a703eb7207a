"""CLI command for red-flag scoring an exported inbox."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import click
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from alteris_briefing.config import load_config
from alteris_briefing.models import CompositeScore, Item
from alteris_briefing.signals import (
    CalendarProximityDetector,
    KeywordMatcher,
    SignalScorer,
    Signals,
    ThreadVelocityDetector,
    VipDetector,
)
from alteris_briefing.sources.json_file import read_events, read_items

console = Console()
logger = logging.getLogger(__name__)

SEVERITY_COLORS = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "dim"}


def score_all(
    items: List[Item],
    vip_emails: List[str],
    events=None,
    flag_threshold: float = 0.3,
    now: Optional[datetime] = None,
) -> Dict[str, CompositeScore]:
    """Run all four detectors and the composite scorer over ``items``.

    The calendar slot is only filled when events were supplied, so a missing
    calendar never lowers a score.
    """
    matcher = KeywordMatcher()
    vip = VipDetector.from_emails(vip_emails)
    velocity = ThreadVelocityDetector().analyze_threads(items)
    calendar = CalendarProximityDetector(events) if events else None
    scorer = SignalScorer(flag_threshold=flag_threshold)

    scores = {}
    for item in items:
        signals = Signals(
            keyword=matcher.match_item(item),
            vip=vip.detect(item),
            velocity=velocity[item.id] if velocity[item.id].message_count > 1 else None,
            calendar=calendar.detect(item, now) if calendar else None,
        )
        scores[item.id] = scorer.score(signals)
    return scores


def _score_json(items: List[Item], scores: Dict[str, CompositeScore]) -> list:
    out = []
    for item in items:
        s = scores[item.id]
        out.append({
            "id": item.id,
            "subject": item.subject,
            "sender": item.sender,
            "score": s.score,
            "is_flagged": s.is_flagged,
            "severity": s.severity,
            "reasons": [
                {"signal": r.signal, "type": r.type, "description": r.description, "weight": r.weight}
                for r in s.reasons
            ],
        })
    return out


@click.command("score")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--events", "events_file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Calendar events JSON (defaults to the events in FILE)")
@click.option("--vip", "vips", multiple=True, help="Extra VIP email (repeatable)")
@click.option("--threshold", type=float, default=None, help="Flag threshold (default from config)")
@click.option("--flagged", "flagged_only", is_flag=True, help="Only show flagged items")
@click.option("--json", "json_mode", is_flag=True, help="Print scores as JSON")
@click.pass_context
def score(ctx, file, events_file, vips, threshold, flagged_only, json_mode):
    """Score every item in FILE with the red-flag signals.

    Examples:

        alteris-briefing score inbox.json

        alteris-briefing score inbox.json --events calendar.json --flagged
    """
    cfg = load_config((ctx.obj or {}).get("config_path"))
    items = read_items(Path(file))
    if not items:
        console.print("[yellow]No items found.[/yellow]")
        return

    events = read_events(Path(events_file or file))
    vip_emails = list(cfg.vip_emails) + list(vips)
    flag_threshold = cfg.flag_threshold if threshold is None else threshold
    scores = score_all(items, vip_emails, events, flag_threshold, datetime.now(timezone.utc))

    ranked = sorted(items, key=lambda i: scores[i.id].score, reverse=True)
    if flagged_only:
        ranked = [i for i in ranked if scores[i.id].is_flagged]

    if json_mode:
        console.print(Syntax(json.dumps(_score_json(ranked, scores), indent=2, ensure_ascii=False), "json"))
        return

    table = Table(title=f"Red-flag scores ({len(items)} items, {len(events)} events)")
    table.add_column("Score", justify="right")
    table.add_column("Severity", justify="center")
    table.add_column("Subject", style="cyan", max_width=50)
    table.add_column("From", style="dim", max_width=30)
    table.add_column("Reasons", max_width=60)

    for item in ranked:
        s = scores[item.id]
        color = SEVERITY_COLORS.get(s.severity or "", "dim")
        flag = "🚩 " if s.is_flagged else ""
        reasons = "; ".join(r.description for r in s.reasons[:3])
        table.add_row(
            f"{flag}{s.score:.2f}",
            f"[{color}]{s.severity or '-'}[/{color}]",
            item.subject,
            item.sender,
            reasons,
        )

    console.print(table)
    flagged = sum(1 for s in scores.values() if s.is_flagged)
    console.print(f"[bold]{flagged}[/bold] of {len(items)} items flagged (threshold {flag_threshold})")
