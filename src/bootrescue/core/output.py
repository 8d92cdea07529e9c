"""Rich terminal formatting for bootrescue output.

Everything here renders the report document; nothing is recomputed.
"""

from __future__ import annotations

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console()
error_console = Console(stderr=True)


SEVERITY_ICONS = {
    "critical": "[red]●[/red]",
    "warning": "[yellow]●[/yellow]",
    "informational": "[blue]●[/blue]",
}

GATE_COLORS = {
    "clear": "green",
    "requires-precondition": "yellow",
    "blocked": "red",
}

STATUS_COLORS = {
    "success": "green",
    "no-op": "green",
    "would-execute": "cyan",
    "warning": "yellow",
    "manual": "yellow",
    "fatal": "red",
    "safety-blocked": "red",
    "skipped-cancelled": "dim",
    "skipped-halted": "dim",
}


def exit_color(exit_code: int) -> str:
    """Return color name based on the document's exit code."""
    return "green" if exit_code == 0 else "red"


def format_detection(detection: dict[str, Any]) -> str:
    """Format a single detection for terminal output."""
    icon = SEVERITY_ICONS.get(detection["severity"], "●")
    lines = [
        f"  {icon} {detection['id']}  {escape(detection['title'])}  "
        f"[dim]({detection['confidence']}%)[/dim]",
        f"     {escape(detection['description'])}",
    ]
    for key, value in detection["evidence"].items():
        lines.append(f"     [dim]{key}: {escape(value)}[/dim]")
    return "\n".join(lines)


def print_detections(document: dict[str, Any]) -> None:
    """Print the diagnosis panel."""
    lines = [""]
    detections = document["detections"]
    if detections:
        for detection in detections:
            lines.append(format_detection(detection))
            lines.append("")
    else:
        lines.append("  [green]No known boot failure signature matched.[/green]")
        lines.append("")

    skipped = document["skipped"]
    if skipped:
        lines.append(f"  [yellow]{len(skipped)} signature(s) not checked:[/yellow]")
        for skip in skipped:
            lines.append(f"    - {skip['signature']}: {escape(skip['reason'])}")
        lines.append("")

    snapshot = document["snapshot"] or {}
    title = f"bootrescue Diagnosis  {escape(document['invocation']['targetRoot'])}"
    if snapshot.get("esp"):
        title += f"  (ESP {escape(snapshot['esp'])})"
    border = "red" if any(d["severity"] == "critical" for d in detections) else "green"
    if detections and border == "green":
        border = "yellow"

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]{title}[/bold]",
        border_style=border,
        padding=(0, 1),
    ))


def print_plan(document: dict[str, Any]) -> None:
    """Print the remediation plan as a table."""
    plan = document["plan"]
    if not plan:
        return

    table = Table(title="Remediation Plan", show_lines=False, expand=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Action")
    table.add_column("Risk")
    table.add_column("Gate")
    table.add_column("For", style="dim")
    for item in plan:
        gate = item["gate"]["state"]
        color = GATE_COLORS.get(gate, "white")
        summary = escape(item["summary"])
        if item["command"]:
            summary += f"\n[dim]{escape(item['command'])}[/dim]"
        if item.get("instructions"):
            summary += f"\n[cyan]-> {escape(item['instructions'])}[/cyan]"
        table.add_row(
            str(item["step"]),
            summary,
            item["risk"],
            f"[{color}]{gate}[/{color}]",
            ", ".join(item["detections"]),
        )
    console.print(table)

    if document["planIncomplete"]:
        console.print(
            "  [yellow]No automatic remediation for: "
            + ", ".join(document["planIncomplete"])
            + "[/yellow]"
        )


def print_execution(document: dict[str, Any]) -> None:
    """Print per-action execution results."""
    results = document["execution"]
    summary = document["executionSummary"]
    if summary is None:
        return

    console.print()
    for result in results:
        color = STATUS_COLORS.get(result["status"], "white")
        line = f"  [{color}]{result['status']:<17}[/{color}] {escape(result['action'])}"
        if result["exitCode"] is not None:
            line += f"  [dim](exit {result['exitCode']})[/dim]"
        console.print(line)
        if result["reason"] and result["status"] != "would-execute":
            console.print(f"     [dim]{escape(result['reason'])}[/dim]")
    console.print(f"\n  [dim]Action log: {escape(summary['logPath'])}[/dim]")


def print_errors(document: dict[str, Any]) -> None:
    errors = document["errors"]
    if not errors:
        return
    error_console.print()
    for error in errors:
        error_console.print(f"  [red]{error['type']}[/red]  {escape(error['message'])}")


def print_document(document: dict[str, Any]) -> None:
    """Print the full report to terminal."""
    print_detections(document)
    print_plan(document)
    print_execution(document)
    print_errors(document)

    color = exit_color(document["exitCode"])
    console.print()
    console.print(f"  {escape(document['narrative'])}")
    console.print(f"  Exit code: [{color}]{document['exitCode']}[/{color}]")
    console.print()


def get_progress() -> Progress:
    """Create a progress instance for a diagnosis run."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=error_console,
    )


def configure_logging(verbose: bool = False) -> None:
    """Route the bootrescue loggers through rich on stderr."""
    handler = RichHandler(console=error_console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root = logging.getLogger("bootrescue")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
