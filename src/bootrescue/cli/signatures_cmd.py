"""bootrescue signatures command."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.table import Table

from bootrescue.cli.diagnose_cmd import load_cli_config
from bootrescue.core.output import SEVERITY_ICONS, console
from bootrescue.matcher.engine import build_signatures
from bootrescue.matcher.signatures import CATALOG_VERSION
from bootrescue.remediation.catalog import REMEDIATION_TABLE


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Export as JSON")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to bootrescue.toml or the directory holding it",
)
def signatures(as_json: bool, config_path: Path | None):
    """List the boot failure signatures this build recognises."""
    config = load_cli_config(config_path)
    catalog = build_signatures(config)
    ignored = set(config.matcher.ignore)

    if as_json:
        output = [
            {
                "id": s.signature_id,
                "title": s.title,
                "severity": s.severity.value,
                "confidence": s.confidence,
                "requires": list(s.requires),
                "remediation": s.remediation,
                "automatic": s.signature_id in REMEDIATION_TABLE,
                "ignored": s.signature_id in ignored,
            }
            for s in catalog
        ]
        click.echo(json.dumps(output, indent=2))
        return

    table = Table(title=f"Signature catalog {CATALOG_VERSION}")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Reads", style="dim")
    for s in catalog:
        icon = SEVERITY_ICONS.get(s.severity.value, "")
        label = f"{icon} {s.signature_id}"
        if s.signature_id in ignored:
            label += " [dim](ignored)[/dim]"
        table.add_row(label, s.title, ", ".join(s.requires))
    console.print(table)
