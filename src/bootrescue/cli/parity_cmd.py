"""bootrescue parity command."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from bootrescue.cli.diagnose_cmd import build_context, target_options
from bootrescue.core.output import configure_logging, console
from bootrescue.engine import DiagnosisEngine


@click.command()
@target_options
@click.option("--runs", type=click.IntRange(min=2), default=2, help="Number of independent preview runs")
def parity(
    target_root: str,
    esp: str,
    registry_exports: tuple[str, ...],
    config_path: Path | None,
    verbose: bool,
    runs: int,
):
    """Check that repeated previews of TARGET_ROOT produce the same report.

    Timestamps are ignored; everything else must match byte for byte.
    """
    configure_logging(verbose)
    context = build_context(
        target_root, esp, False, False, False, registry_exports, config_path, verbose
    )
    result = DiagnosisEngine().parity(context, runs=runs)

    if result.equal:
        console.print(f"\n  [green]Parity holds[/green] across {result.runs} runs.")
        console.print(f"  [dim]sha256 {result.digest}[/dim]\n")
        return

    console.print(f"\n  [red]Parity broken[/red]: runs of {target_root} disagree.\n")
    click.echo(result.diff)
    sys.exit(1)
