"""Click CLI entry point for bootrescue."""

from __future__ import annotations

import click

from bootrescue._version import __version__


@click.group()
@click.version_option(version=__version__, prog_name="bootrescue")
def cli():
    """bootrescue - precision boot diagnosis and repair.

    Collect evidence from an offline or live Windows installation, match it
    against known boot failure signatures and preview or apply the repair.
    """
    pass


# Import and register subcommands
from bootrescue.cli.diagnose_cmd import diagnose  # noqa: E402
from bootrescue.cli.parity_cmd import parity  # noqa: E402
from bootrescue.cli.signatures_cmd import signatures  # noqa: E402
from bootrescue.cli.log_cmd import log  # noqa: E402

cli.add_command(diagnose)
cli.add_command(parity)
cli.add_command(signatures)
cli.add_command(log)


if __name__ == "__main__":
    cli()
