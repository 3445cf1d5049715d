import click

from stackwork.cli.core import require_repo
from stackwork.cli.output import error_and_exit, machine_output, user_output
from stackwork.core.config import (
    CONFIG_KEYS,
    GlobalConfig,
    global_config_path,
    read_trunk_from_pyproject,
    save_global_config,
    set_config_value,
    write_trunk_to_pyproject,
)
from stackwork.core.context import StackContext
from stackwork.core.repo_discovery import NoRepoSentinel

TRUNK_KEY = "trunk-branch"


def _format_value(config: GlobalConfig, key: str) -> str:
    value = getattr(config, key)
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


@click.group("config")
def config_group() -> None:
    """Manage stackwork configuration."""


@config_group.command("list")
@click.pass_obj
def config_list(ctx: StackContext) -> None:
    """Print a list of configuration keys and values."""
    user_output(click.style("Global configuration:", bold=True) + f" ({global_config_path()})")
    for key in CONFIG_KEYS:
        user_output(f"  {key}={_format_value(ctx.global_config, key)}")

    user_output(click.style("\nRepository configuration:", bold=True))
    if isinstance(ctx.repo, NoRepoSentinel):
        user_output("  (not in a git repository)")
        return

    trunk_branch = read_trunk_from_pyproject(ctx.repo.root)
    if trunk_branch:
        user_output(f"  {TRUNK_KEY}={trunk_branch}")
    else:
        user_output(f"  {TRUNK_KEY}={ctx.git.get_trunk_branch(ctx.repo.root)} (auto-detected)")


@config_group.command("get")
@click.argument("key", metavar="KEY")
@click.pass_obj
def config_get(ctx: StackContext, key: str) -> None:
    """Print the value of a given configuration key."""
    if key in CONFIG_KEYS:
        machine_output(_format_value(ctx.global_config, key))
        return

    if key != TRUNK_KEY:
        error_and_exit(f"Invalid key: {key}")

    repo = require_repo(ctx)
    trunk_branch = read_trunk_from_pyproject(repo.root)
    if trunk_branch:
        machine_output(trunk_branch)
    else:
        user_output("not configured (will auto-detect)")


@config_group.command("set")
@click.argument("key", metavar="KEY")
@click.argument("value", metavar="VALUE")
@click.pass_obj
def config_set(ctx: StackContext, key: str, value: str) -> None:
    """Update configuration with a value for the given key."""
    if key in CONFIG_KEYS:
        try:
            new_config = set_config_value(ctx.global_config, key, value)
        except ValueError as e:
            error_and_exit(f"{e} for {key}")
        save_global_config(new_config)
        user_output(f"Set {key}={value}")
        return

    if key != TRUNK_KEY:
        error_and_exit(f"Invalid key: {key}")

    repo = require_repo(ctx)
    if ctx.git.get_branch_head(repo.root, value) is None:
        error_and_exit(
            f"Branch '{value}' does not exist in repository.\n"
            "Create the branch first before configuring it as trunk."
        )
    write_trunk_to_pyproject(repo.root, value)
    user_output(f"Set {TRUNK_KEY}={value}")
