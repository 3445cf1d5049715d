"""Text rendering of engine and transaction results."""

import click

from stackwork.cli.output import user_output
from stackwork.core.restack import BranchRestackState, RestackResult
from stackwork.core.transaction import ApplyResult, ApplyStatus

_STATE_STYLES = {
    BranchRestackState.CLEAN: "green",
    BranchRestackState.CONFLICTED: "red",
    BranchRestackState.ABORTED: "yellow",
    BranchRestackState.SKIPPED: "yellow",
}


def render_restack_result(result: RestackResult, *, show_tips: bool = True) -> None:
    for outcome in result.outcomes:
        if outcome.rebased:
            label = "restacked"
        elif outcome.state == BranchRestackState.CLEAN:
            label = "up to date"
        else:
            label = outcome.state.value
        styled = click.style(label, fg=_STATE_STYLES.get(outcome.state))
        user_output(f"  {click.style(outcome.branch, fg='cyan', bold=True)}: {styled}")

    for branch in result.skipped:
        user_output(
            click.style("Warning: ", fg="yellow")
            + f"Parent of '{branch}' no longer exists. "
            + f"Re-parent it with 'stackwork branch track {branch} --parent <branch>'."
        )

    for path in result.unrestored_stashes:
        user_output(
            click.style("Warning: ", fg="yellow")
            + f"Auto-stash could not be re-applied in {path}; it is kept in 'git stash list'."
        )

    if result.conflict is not None:
        conflict = result.conflict
        user_output()
        user_output(
            click.style("Conflict ", fg="red", bold=True)
            + f"while restacking '{conflict.branch}' onto '{conflict.parent}'"
            + f" in {conflict.worktree}"
        )
        for path in conflict.files:
            user_output(f"  {click.style('both modified:', fg='red')} {path}")
        if show_tips:
            user_output()
            user_output("Resolve the conflicts and stage the files, then run:")
            user_output("  stackwork continue")
            user_output("To give up on this branch, run:")
            user_output("  stackwork abort")
        return

    if result.aborted:
        user_output(click.style("Restack aborted.", fg="yellow"))
        if show_tips:
            user_output(
                "Branches restacked earlier can be reverted with "
                f"'stackwork undo {result.operation_id}'."
            )
        return

    if result.rebased:
        user_output(click.style(f"✓ Restacked {len(result.rebased)} branch(es)", fg="green"))
    else:
        user_output("Everything is up to date.")


def render_apply_result(result: ApplyResult, verb: str) -> None:
    """Print per-branch outcomes of an undo or redo."""
    for outcome in result.outcomes:
        target = outcome.target[:8] if outcome.target else "(deleted)"
        if outcome.local_ok:
            line = f"  {click.style(outcome.branch, fg='cyan', bold=True)} -> {target}"
            if outcome.remote_ok is True:
                line += " (remote updated)"
            elif outcome.remote_ok is False:
                line += click.style(f" (remote update failed: {outcome.error})", fg="red")
            user_output(line)
        else:
            user_output(
                f"  {click.style(outcome.branch, fg='cyan', bold=True)}: "
                + click.style(f"failed: {outcome.error}", fg="red")
            )

    if result.status == ApplyStatus.COMPLETE:
        user_output(click.style(f"✓ {verb} {result.operation_id} ({result.kind})", fg="green"))
    elif result.status == ApplyStatus.PARTIAL:
        user_output(
            click.style("Warning: ", fg="yellow")
            + f"{verb} {result.operation_id} only partially applied. "
            + "Fix the failures above and retry with the operation id."
        )
    else:
        user_output(click.style("Error: ", fg="red") + f"{verb} {result.operation_id} failed")
