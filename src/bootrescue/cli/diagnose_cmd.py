"""bootrescue diagnose command."""

from __future__ import annotations

import signal
import sys
from pathlib import Path

import click

from bootrescue.core.config import BootRescueConfig, load_config
from bootrescue.core.context import CancellationToken, EngineContext, ProgressEvent
from bootrescue.core.errors import ConfigError
from bootrescue.core.output import configure_logging, error_console, get_progress, print_document
from bootrescue.engine import DiagnosisEngine
from bootrescue.report.parity import canonical_bytes

PHASE_LABELS = {
    "collect": "Collecting evidence",
    "match": "Matching signatures",
    "gate": "Evaluating safety",
    "plan": "Planning remediation",
    "execute": "Executing plan",
    "report": "Building report",
}


def load_cli_config(config_path: Path | None) -> BootRescueConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def build_context(
    target_root: str,
    esp: str,
    apply: bool,
    acknowledge_live_os: bool,
    override_build_check: bool,
    registry_exports: tuple[str, ...],
    config_path: Path | None,
    verbose: bool,
    **extra,
) -> EngineContext:
    """Build the run context shared by the diagnose and parity commands."""
    return EngineContext(
        target_root=target_root,
        esp=esp,
        apply=apply,
        verbose=verbose,
        acknowledge_live_os=acknowledge_live_os,
        override_build_check=override_build_check,
        registry_exports=tuple(registry_exports),
        config=load_cli_config(config_path),
        **extra,
    )


def target_options(func):
    """Options every command that runs the pipeline accepts."""
    options = [
        click.argument("target_root"),
        click.option("--esp", default="", help="EFI system partition (drive letter or mount path)"),
        click.option(
            "--registry-export",
            "registry_exports",
            multiple=True,
            type=click.Path(exists=True, dir_okay=False),
            help="Use a .reg export instead of loading hives (repeatable)",
        ),
        click.option(
            "--config",
            "config_path",
            type=click.Path(exists=True, path_type=Path),
            default=None,
            help="Path to bootrescue.toml or the directory holding it",
        ),
        click.option("-v", "--verbose", is_flag=True, help="Log every probe and command"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.command()
@target_options
@click.option("--apply", is_flag=True, help="Execute the plan (default is preview only)")
@click.option(
    "--i-understand-live-os",
    "acknowledge_live_os",
    is_flag=True,
    help="Allow high-risk actions against the running installation",
)
@click.option("--override-build-check", is_flag=True, help="Proceed although the recovery build is older")
@click.option("--output", "output_path", type=click.Path(dir_okay=False), help="Write the JSON document to a file")
@click.option("--json", "as_json", is_flag=True, help="Print the JSON document instead of the report")
def diagnose(
    target_root: str,
    esp: str,
    registry_exports: tuple[str, ...],
    config_path: Path | None,
    verbose: bool,
    apply: bool,
    acknowledge_live_os: bool,
    override_build_check: bool,
    output_path: str | None,
    as_json: bool,
):
    """Diagnose why TARGET_ROOT does not boot and plan the repair.

    TARGET_ROOT is the Windows volume to inspect, e.g. D: from WinRE.
    Without --apply nothing is changed.
    """
    configure_logging(verbose)

    if apply and acknowledge_live_os:
        click.confirm(
            "High-risk actions may run against the installation you are booted from. Continue?",
            abort=True,
        )

    cancel = CancellationToken()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.cancel())
    try:
        with get_progress() as progress:
            task = progress.add_task("Starting...", total=None)

            def on_progress(event: ProgressEvent) -> None:
                if event.status == "started":
                    progress.update(task, description=PHASE_LABELS.get(event.phase, event.phase) + "...")
                elif event.message and event.phase == "execute":
                    progress.update(task, description=f"Executing {event.message}...")

            context = build_context(
                target_root, esp, apply, acknowledge_live_os, override_build_check,
                registry_exports, config_path, verbose, cancel=cancel, progress=on_progress,
            )
            run = DiagnosisEngine().run(context)
            progress.update(task, completed=True)
    finally:
        signal.signal(signal.SIGINT, previous)

    document = run.document
    if output_path:
        Path(output_path).write_bytes(canonical_bytes(document))
        error_console.print(f"  [dim]JSON report saved to {output_path}[/dim]")

    if as_json:
        click.echo(canonical_bytes(document).decode("utf-8"), nl=False)
    else:
        print_document(document)

    if run.exit_code:
        sys.exit(run.exit_code)
