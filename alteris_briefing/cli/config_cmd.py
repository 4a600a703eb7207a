"""CLI commands for viewing and editing the briefing config."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.syntax import Syntax

from alteris_briefing.config import DEFAULT_CONFIG_PATH, BriefingConfig, load_config, save_config

console = Console()
logger = logging.getLogger(__name__)

LIST_KEYS = ("vip_emails", "muted_senders", "knowledge_entries")


def _parse_value(key: str, raw: str):
    current = getattr(BriefingConfig(), key)
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if raw.lower() in ("", "none", "null"):
        return None
    return raw


@click.group("config")
def config():
    """Show or edit ~/.alteris/briefing.json."""
    pass


@config.command("show")
@click.pass_context
def show(ctx):
    """Print the effective config (file + environment overrides)."""
    path = (ctx.find_root().obj or {}).get("config_path")
    cfg = load_config(path)
    console.print(f"[dim]{path or DEFAULT_CONFIG_PATH}[/dim]")
    console.print(Syntax(json.dumps(cfg.to_dict(), indent=2), "json"))


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_value(ctx, key, value):
    """Set a scalar setting, e.g. `config set provider ollama`."""
    path = (ctx.find_root().obj or {}).get("config_path")
    if key not in BriefingConfig.__dataclass_fields__ or key in LIST_KEYS:
        console.print(f"[red]Unknown or non-scalar key:[/red] {key}")
        sys.exit(1)

    cfg = load_config(path)
    try:
        setattr(cfg, key, _parse_value(key, value))
        cfg.validate()
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    save_config(cfg, Path(path) if path else None)
    console.print(f"[green]✓[/green] {key} = {getattr(cfg, key)!r}")


@config.command("add")
@click.argument("key", type=click.Choice(LIST_KEYS))
@click.argument("value")
@click.pass_context
def add_value(ctx, key, value):
    """Append to a list setting, e.g. `config add vip_emails ceo@example.com`."""
    path = (ctx.find_root().obj or {}).get("config_path")
    cfg = load_config(path)
    entries = getattr(cfg, key)
    if value in entries:
        console.print(f"[dim]{value} already in {key}[/dim]")
        return
    entries.append(value)
    save_config(cfg, Path(path) if path else None)
    console.print(f"[green]✓[/green] Added {value} to {key}")


@config.command("remove")
@click.argument("key", type=click.Choice(LIST_KEYS))
@click.argument("value")
@click.pass_context
def remove_value(ctx, key, value):
    """Remove an entry from a list setting."""
    path = (ctx.find_root().obj or {}).get("config_path")
    cfg = load_config(path)
    entries = getattr(cfg, key)
    if value not in entries:
        console.print(f"[yellow]{value} not in {key}[/yellow]")
        return
    entries.remove(value)
    save_config(cfg, Path(path) if path else None)
    console.print(f"[green]✓[/green] Removed {value} from {key}")
