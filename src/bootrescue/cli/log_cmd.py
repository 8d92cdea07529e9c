"""bootrescue log command."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.markup import escape

from bootrescue.cli.diagnose_cmd import load_cli_config
from bootrescue.core.config import get_log_path
from bootrescue.core.output import console
from bootrescue.remediation.log import ActionLog

TAG_COLORS = {
    "PROPOSED": "dim",
    "WOULD-EXECUTE": "cyan",
    "EXECUTE": "bold",
    "RESULT": "green",
    "SAFETY-BLOCKED": "red",
    "SKIPPED": "yellow",
    "MANUAL": "yellow",
    "REFUSED": "red",
}


@click.command()
@click.option("--last", "last_n", type=int, default=50, help="Number of entries to show (0 for all)")
@click.option("--json", "as_json", is_flag=True, help="Export as JSON")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to bootrescue.toml or the directory holding it",
)
def log(last_n: int, as_json: bool, config_path: Path | None):
    """Show the action log: every proposed, previewed and executed action."""
    path = get_log_path(load_cli_config(config_path))
    if not path.exists():
        console.print("\n  No actions logged yet. Run `bootrescue diagnose` first.\n")
        return

    entries = ActionLog(path).read_entries(last_n=last_n)
    if as_json:
        output = [
            {
                "timestamp": e.timestamp.isoformat(),
                "mode": e.mode.value,
                "tag": e.tag,
                "action": e.action,
                "status": e.status,
                "exitCode": e.exit_code,
                "command": e.command,
                "output": e.output,
            }
            for e in entries
        ]
        click.echo(json.dumps(output, indent=2))
        return

    console.print(f"\n  [bold]Action log[/bold]  [dim]{escape(str(path))}[/dim]\n")
    for e in entries:
        color = TAG_COLORS.get(e.tag, "white")
        stamp = e.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        line = f"  {stamp}  {e.mode.value:<7} [{color}]{e.tag:<14}[/{color}] {escape(e.action)}  {escape(e.status)}"
        if e.exit_code is not None:
            line += f" (exit {e.exit_code})"
        console.print(line, highlight=False)
        if e.command:
            console.print(f"      [dim]{escape(e.command)}[/dim]", highlight=False)
    console.print()
