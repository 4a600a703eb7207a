"""Alteris Briefing CLI — triage an inbox export into a spoken-style briefing."""

import logging
import subprocess

import click
from rich.console import Console
from rich.logging import RichHandler

from alteris_briefing.cli.brief_cmd import brief
from alteris_briefing.cli.config_cmd import config
from alteris_briefing.cli.history_cmd import history
from alteris_briefing.cli.score_cmd import score
from alteris_briefing.llm.client import KEYCHAIN_SERVICE

console = Console()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--config-file", type=click.Path(dir_okay=False), default=None,
              help="Config file (default: ~/.alteris/briefing.json)")
@click.pass_context
def cli(ctx, verbose, config_file):
    """Alteris Briefing — red-flag scoring and topic briefings for your inbox."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_file


@cli.command("set-key")
@click.argument("provider", type=click.Choice(["gemini", "claude"]))
@click.option("--key", prompt=True, hide_input=True, help="API key")
def set_key(provider, key):
    """Store an API key in macOS Keychain.

    Examples:

        alteris-briefing set-key gemini

        alteris-briefing set-key claude
    """
    subprocess.run(
        ["security", "delete-generic-password", "-a", provider, "-s", KEYCHAIN_SERVICE],
        capture_output=True,
    )
    result = subprocess.run(
        ["security", "add-generic-password", "-a", provider, "-s", KEYCHAIN_SERVICE, "-w", key],
        capture_output=True, text=True,
    )
    if result.returncode == 0:
        console.print(f"[green]✓[/green] {provider} API key stored in Keychain")
    else:
        console.print(f"[red]Failed to store key:[/red] {result.stderr}")


cli.add_command(score)
cli.add_command(brief)
cli.add_command(history)
cli.add_command(config)


if __name__ == "__main__":
    cli()
