"""Tree view of tracked branches."""

import click

from stackwork.cli.core import build_services, stackwork_errors
from stackwork.cli.output import user_output
from stackwork.core.context import StackContext
from stackwork.core.diff_cache import StackSession
from stackwork.core.restack import load_restack_state
from stackwork.core.stack import RestackStatus, Stack


@click.command("ls")
@click.option("--stat", "show_stat", is_flag=True, help="Show a diffstat summary per branch.")
@click.pass_obj
def ls_cmd(ctx: StackContext, show_stat: bool) -> None:
    """Display tracked branches as a tree rooted at trunk.

    Example:
        $ stackwork ls
        main
        ├─ feature-a
        │  └─ feature-a-2 (needs restack)
        └─ feature-b *

    Legend:
        * = branch checked out in this worktree
    """
    with stackwork_errors():
        services = build_services(ctx)
        stack = services.session.stack
        current = ctx.git.get_current_branch(ctx.cwd)

        lines = render_stack_tree(
            stack, current, services.session if show_stat else None
        )
        for line in lines:
            user_output(line)

        for branch in stack.pruned:
            user_output(
                click.style("Pruned ", fg="yellow")
                + f"metadata of deleted branch '{branch}'"
            )

        state = load_restack_state(services.repo.restack_state_path)
        if state is not None:
            user_output()
            user_output(
                click.style("Restack paused ", fg="red", bold=True)
                + f"on '{state.branch}'. Run 'stackwork continue' or 'stackwork abort'."
            )


def render_stack_tree(stack: Stack, current: str | None, session: StackSession | None) -> list[str]:
    """Render the forest as box-drawing lines, trunk first."""
    lines = [_label(stack, stack.trunk, current, session)]

    def walk(name: str, prefix: str) -> None:
        children = stack.children_of(name)
        for i, child in enumerate(children):
            last = i == len(children) - 1
            connector = "└─ " if last else "├─ "
            lines.append(prefix + connector + _label(stack, child, current, session))
            walk(child, prefix + ("   " if last else "│  "))

    walk(stack.trunk, "")
    return lines


def _label(stack: Stack, name: str, current: str | None, session: StackSession | None) -> str:
    if name == current:
        text = click.style(name, fg="bright_green", bold=True) + " *"
    else:
        text = click.style(name, fg="cyan", bold=True) if name != stack.trunk else name

    if name == stack.trunk:
        return text

    status = stack.status(name)
    if status == RestackStatus.NEEDS_RESTACK:
        text += click.style(" (needs restack)", fg="yellow")
    elif status == RestackStatus.PARENT_MISSING:
        text += click.style(f" (parent '{stack.entry(name).parent}' missing)", fg="red")

    if session is not None:
        summary = _stat_summary(session.branch_diff(name, stat=True))
        if summary:
            text += click.style(f"  {summary}", dim=True)
    return text


def _stat_summary(stat: str) -> str:
    lines = [line for line in stat.splitlines() if line.strip()]
    return lines[-1].strip() if lines else ""
