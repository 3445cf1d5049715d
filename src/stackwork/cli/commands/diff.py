import click

from stackwork.cli.core import build_services, current_branch_or_exit, stackwork_errors
from stackwork.cli.output import machine_output
from stackwork.core.context import StackContext


@click.command("diff")
@click.argument("branch", required=False)
@click.option("--stat", is_flag=True, help="Show a diffstat instead of the full patch.")
@click.option("--stack", "whole_stack", is_flag=True, help="Diff every branch of the stack.")
@click.pass_obj
def diff_cmd(ctx: StackContext, branch: str | None, stat: bool, whole_stack: bool) -> None:
    """Show what BRANCH (default: current) adds on top of its parent."""
    with stackwork_errors():
        services = build_services(ctx)
        stack = services.session.stack
        name = branch if branch is not None else current_branch_or_exit(ctx)

        if whole_stack:
            names = [b.name for b in stack.stack_of(name)]
        else:
            stack.entry(name)
            names = [name]

        for current in names:
            if whole_stack:
                header = f"{current} (on {stack.parent_of(current)})"
                machine_output(click.style(header, fg="cyan", bold=True))
            machine_output(services.session.branch_diff(current, stat=stat), nl=False)
