import click
from rich.console import Console
from rich.table import Table

from stackwork.cli.core import build_services, stackwork_errors
from stackwork.cli.output import user_output
from stackwork.core.context import StackContext
from stackwork.core.transaction import OperationStatus

_STATUS_COLORS = {
    OperationStatus.IN_PROGRESS: "yellow",
    OperationStatus.COMMITTED: "green",
    OperationStatus.UNDONE: "dim",
}


@click.group("ops")
def ops_group() -> None:
    """Inspect and clean up recorded operations."""


@ops_group.command("list")
@click.option("--limit", "-n", type=int, default=20, show_default=True, help="Newest N only.")
@click.pass_obj
def ops_list(ctx: StackContext, limit: int) -> None:
    """List recorded operations, newest first."""
    with stackwork_errors():
        services = build_services(ctx)
        receipts = list(reversed(services.transactions.list_operations()))[:limit]

    if not receipts:
        user_output("No operations recorded.")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("kind", no_wrap=True)
    table.add_column("status", no_wrap=True)
    table.add_column("branches")

    for receipt in receipts:
        color = _STATUS_COLORS[receipt.status]
        branches = ", ".join(record.branch for record in receipt.branches) or "-"
        pushed = any(record.pushed for record in receipt.branches)
        status = f"[{color}]{receipt.status.value}[/{color}]"
        if pushed:
            status += " [blue](pushed)[/blue]"
        table.add_row(receipt.operation_id, receipt.kind, status, branches)

    console = Console(stderr=True, width=200, force_terminal=True)
    console.print(table)


@ops_group.command("prune")
@click.option(
    "--keep", type=int, default=20, show_default=True, help="Number of newest operations to keep."
)
@click.pass_obj
def ops_prune(ctx: StackContext, keep: int) -> None:
    """Delete backup refs and receipts of older operations.

    Pruned operations can no longer be undone.
    """
    with stackwork_errors():
        services = build_services(ctx)
        removed = services.transactions.prune(keep)

    if not removed:
        user_output("Nothing to prune.")
        return
    for operation_id in removed:
        user_output(f"  removed {operation_id}")
    user_output(click.style("✓ ", fg="green") + f"Pruned {len(removed)} operation(s)")
