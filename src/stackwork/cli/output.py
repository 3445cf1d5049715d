"""Output utilities for CLI commands with clear intent.

user_output: status messages, progress and errors, routed to stderr so that
stdout stays clean for machine-readable data.
machine_output: structured data meant to be piped, routed to stdout.
"""

from typing import Any, NoReturn

import click


def user_output(message: Any = "", *, nl: bool = True) -> None:
    click.echo(message, err=True, nl=nl)


def machine_output(message: Any = "", *, nl: bool = True) -> None:
    click.echo(message, nl=nl)


def error_and_exit(message: str) -> NoReturn:
    """Print a red `Error:` line and exit with status 1."""
    user_output(click.style("Error: ", fg="red") + message)
    raise SystemExit(1)
