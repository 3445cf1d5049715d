import click

from stackwork.cli.commands.restack import finish_restack, resolve_auto_stash
from stackwork.cli.commands.sync import remote_trunk_tip
from stackwork.cli.core import build_services, current_branch_or_exit, stackwork_errors
from stackwork.cli.output import error_and_exit, user_output
from stackwork.core.context import StackContext
from stackwork.core.restack import RestackScope


@click.command("cascade")
@click.argument("branch", required=False)
@click.option("--no-push", is_flag=True, help="Restack only; do not push.")
@click.option(
    "--auto-stash/--no-auto-stash",
    default=None,
    help="Stash uncommitted changes around the rebase (config: auto_stash).",
)
@click.pass_obj
def cascade_cmd(
    ctx: StackContext, branch: str | None, no_push: bool, auto_stash: bool | None
) -> None:
    """Restack the whole stack containing BRANCH, then force-push it.

    Pushed branches are recorded in the operation receipt so that
    'stackwork undo' also restores them on the remote.
    """
    with stackwork_errors():
        services = build_services(ctx)
        root = services.repo.root
        remote = ctx.global_config.remote
        name = branch if branch is not None else current_branch_or_exit(ctx)

        trunk_tip = ctx.git.get_branch_head(root, services.trunk)
        remote_tip = remote_trunk_tip(ctx, services)
        if trunk_tip is not None and remote_tip is not None:
            behind = ctx.git.count_commits(root, trunk_tip, remote_tip)
            if behind > 0:
                user_output(
                    click.style("Warning: ", fg="yellow")
                    + f"'{services.trunk}' is {behind} commit(s) behind {remote}/{services.trunk}. "
                    + "Run 'stackwork sync' first to cascade onto the latest trunk."
                )

        result = services.engine.restack(
            name, RestackScope.STACK, auto_stash=resolve_auto_stash(ctx, auto_stash), kind="cascade"
        )
    finish_restack(ctx, result)

    if no_push or not result.completed:
        return

    with stackwork_errors():
        handle = services.transactions.resume(result.operation_id)
        pushed: list[str] = []
        failure: str | None = None
        for branch_name in handle.branches:
            user_output(f"Pushing '{branch_name}' to {remote}...")
            try:
                ctx.git.push_branch(root, remote, branch_name, branch_name, force=True)
            except RuntimeError as e:
                failure = f"Failed to push '{branch_name}': {e}"
                break
            pushed.append(branch_name)

        services.transactions.commit(handle, pushed=pushed)

    if failure is not None:
        error_and_exit(failure)
    user_output(click.style("✓ ", fg="green") + f"Pushed {len(pushed)} branch(es) to {remote}")
