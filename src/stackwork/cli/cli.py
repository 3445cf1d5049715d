import logging
import os

import click

from stackwork.cli.commands.branch import branch_group
from stackwork.cli.commands.cascade import cascade_cmd
from stackwork.cli.commands.config import config_group
from stackwork.cli.commands.diff import diff_cmd
from stackwork.cli.commands.ops import ops_group
from stackwork.cli.commands.restack import abort_cmd, continue_cmd, restack_cmd
from stackwork.cli.commands.status import ls_cmd
from stackwork.cli.commands.sync import sync_cmd
from stackwork.cli.commands.undo import redo_cmd, undo_cmd
from stackwork.core.context import create_context

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])  # terse help flags


def _configure_logging(debug: bool) -> None:
    if debug or os.getenv("STACKWORK_DEBUG"):
        logging.basicConfig(level=logging.DEBUG, format="[DEBUG %(name)s:%(lineno)d] %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="stackwork")
@click.option("--debug", is_flag=True, help="Enable debug logging (or set STACKWORK_DEBUG).")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Manage stacks of dependent git branches."""
    _configure_logging(debug)
    # Only create context if not already provided (e.g., by tests)
    if ctx.obj is None:
        ctx.obj = create_context()


cli.add_command(ls_cmd)
cli.add_command(branch_group)
cli.add_command(restack_cmd)
cli.add_command(continue_cmd)
cli.add_command(abort_cmd)
cli.add_command(sync_cmd)
cli.add_command(cascade_cmd)
cli.add_command(undo_cmd)
cli.add_command(redo_cmd)
cli.add_command(diff_cmd)
cli.add_command(ops_group)
cli.add_command(config_group)


def main() -> None:
    """CLI entry point used by the `stackwork` console script."""
    cli()
