import click

from stackwork.cli.core import build_services, stackwork_errors
from stackwork.cli.rendering import render_apply_result
from stackwork.core.context import StackContext
from stackwork.core.restack import ensure_no_restack_in_progress
from stackwork.core.transaction import ApplyStatus


@click.command("undo")
@click.argument("operation_id", required=False)
@click.option("--local-only", is_flag=True, help="Do not restore pushed branches on the remote.")
@click.pass_obj
def undo_cmd(ctx: StackContext, operation_id: str | None, local_only: bool) -> None:
    """Restore branches to their state before an operation.

    Without OPERATION_ID, undoes the most recent operation that has not been
    undone yet. See 'stackwork ops list' for ids.
    """
    with stackwork_errors():
        services = build_services(ctx)
        ensure_no_restack_in_progress(services.repo.restack_state_path)
        result = services.transactions.undo(operation_id, local_only=local_only)

    render_apply_result(result, "Undid")
    if result.status != ApplyStatus.COMPLETE:
        raise SystemExit(1)


@click.command("redo")
@click.argument("operation_id", required=False)
@click.option("--local-only", is_flag=True, help="Do not update pushed branches on the remote.")
@click.pass_obj
def redo_cmd(ctx: StackContext, operation_id: str | None, local_only: bool) -> None:
    """Re-apply the most recently undone operation."""
    with stackwork_errors():
        services = build_services(ctx)
        ensure_no_restack_in_progress(services.repo.restack_state_path)
        result = services.transactions.redo(operation_id, local_only=local_only)

    render_apply_result(result, "Redid")
    if result.status != ApplyStatus.COMPLETE:
        raise SystemExit(1)
