"""Click CLI entry point for RuleForge."""

from __future__ import annotations

import logging

import click
from rich.logging import RichHandler

from ruleforge._version import __version__
from ruleforge.core.output import error_console


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_path=verbose, rich_tracebacks=True)],
        force=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="ruleforge")
@click.option("-v", "--verbose", is_flag=True, help="Log engine activity to stderr")
def cli(verbose: bool):
    """RuleForge - self-improving rule engine for repository fleets.

    Distill patterns into rules, diagnose every repository, and repair what
    the rules are confident about.
    """
    configure_logging(verbose)


# Import and register subcommands
from ruleforge.cli.distill_cmd import distill  # noqa: E402
from ruleforge.cli.rules_cmd import rules  # noqa: E402
from ruleforge.cli.run_cmd import run  # noqa: E402
from ruleforge.cli.report_cmd import history, report  # noqa: E402

cli.add_command(distill)
cli.add_command(rules)
cli.add_command(run)
cli.add_command(report)
cli.add_command(history)


if __name__ == "__main__":
    cli()
