"""fieldlogic CLI entry point."""

import logging

import click

from fieldlogic.settings import Settings


@click.group()
@click.option(
    "--log-level",
    default=None,
    help="Logging level (defaults to FIELDLOGIC_LOG_LEVEL or WARNING).",
)
def cli(log_level: str | None):
    """fieldlogic: reactive form logic CLI."""
    logging.basicConfig(
        level=(log_level or Settings.from_env().log_level).upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )


# Register subcommands
from fieldlogic.cli.config_cmd import config  # noqa: E402
from fieldlogic.cli.evaluate_cmd import evaluate  # noqa: E402

cli.add_command(config)
cli.add_command(evaluate)
