import click

from stackwork.cli.core import build_services, current_branch_or_exit, stackwork_errors
from stackwork.cli.rendering import render_restack_result
from stackwork.core.context import StackContext
from stackwork.core.restack import RestackResult, RestackScope

SCOPE_CHOICES = [scope.value for scope in RestackScope]


def resolve_auto_stash(ctx: StackContext, auto_stash: bool | None) -> bool:
    if auto_stash is None:
        return ctx.global_config.auto_stash
    return auto_stash


def finish_restack(ctx: StackContext, result: RestackResult) -> None:
    """Render a run and exit 1 if it stopped on a conflict."""
    render_restack_result(result, show_tips=ctx.global_config.show_tips)
    if result.conflict is not None:
        raise SystemExit(1)


@click.command("restack")
@click.argument("branch", required=False)
@click.option(
    "--scope",
    type=click.Choice(SCOPE_CHOICES),
    default=RestackScope.UPSTACK.value,
    show_default=True,
    help="Which branches to restack relative to BRANCH.",
)
@click.option(
    "--auto-stash/--no-auto-stash",
    default=None,
    help="Stash uncommitted changes around the rebase (config: auto_stash).",
)
@click.pass_obj
def restack_cmd(ctx: StackContext, branch: str | None, scope: str, auto_stash: bool | None) -> None:
    """Rebase BRANCH (default: current) and related branches onto their parents."""
    with stackwork_errors():
        services = build_services(ctx)
        name = branch if branch is not None else current_branch_or_exit(ctx)
        result = services.engine.restack(
            name, RestackScope(scope), auto_stash=resolve_auto_stash(ctx, auto_stash)
        )
    finish_restack(ctx, result)


@click.command("continue")
@click.pass_obj
def continue_cmd(ctx: StackContext) -> None:
    """Continue a restack paused on a conflict."""
    with stackwork_errors():
        services = build_services(ctx)
        result = services.engine.continue_restack()
    finish_restack(ctx, result)


@click.command("abort")
@click.pass_obj
def abort_cmd(ctx: StackContext) -> None:
    """Abort the stalled rebase of a paused restack."""
    with stackwork_errors():
        services = build_services(ctx)
        result = services.engine.abort_restack()
    finish_restack(ctx, result)
