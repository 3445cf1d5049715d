"""Create, adopt, forget and delete stacked branches."""

import click

from stackwork.cli.core import build_services, current_branch_or_exit, stackwork_errors
from stackwork.cli.output import error_and_exit, user_output
from stackwork.core.context import StackContext
from stackwork.core.git.abc import find_worktree_for_branch


@click.group("branch")
def branch_group() -> None:
    """Manage tracked branches."""


@branch_group.command("create")
@click.argument("name")
@click.option("--parent", "-p", help="Parent branch (defaults to the current branch).")
@click.option("--checkout/--no-checkout", default=True, help="Check out the new branch.")
@click.pass_obj
def branch_create(ctx: StackContext, name: str, parent: str | None, checkout: bool) -> None:
    """Create NAME on top of its parent and start tracking it."""
    with stackwork_errors():
        services = build_services(ctx)
        stack = services.session.stack
        parent_name = parent if parent is not None else current_branch_or_exit(ctx)

        if ctx.git.get_branch_head(services.repo.root, name) is not None:
            error_and_exit(f"Branch '{name}' already exists")
        if parent_name != services.trunk and not stack.is_tracked(parent_name):
            error_and_exit(
                f"Parent '{parent_name}' is not tracked. "
                f"Track it first with 'stackwork branch track {parent_name}'."
            )
        parent_tip = ctx.git.get_branch_head(services.repo.root, parent_name)
        if parent_tip is None:
            error_and_exit(f"Parent branch '{parent_name}' does not exist")

        handle = services.transactions.begin("branch-create", [name])
        ctx.git.create_branch(ctx.cwd, name, parent_tip)
        services.store.write(name, parent_name, parent_tip)
        services.transactions.commit(handle)

        if checkout:
            ctx.git.checkout_branch(ctx.cwd, name)
        user_output(click.style("✓ ", fg="green") + f"Created '{name}' on top of '{parent_name}'")


@branch_group.command("track")
@click.argument("branch", required=False)
@click.option("--parent", "-p", help="Parent branch (defaults to trunk).")
@click.pass_obj
def branch_track(ctx: StackContext, branch: str | None, parent: str | None) -> None:
    """Start tracking BRANCH (defaults to the current branch), or re-parent it."""
    with stackwork_errors():
        services = build_services(ctx)
        stack = services.session.stack
        name = branch if branch is not None else current_branch_or_exit(ctx)
        parent_name = parent if parent is not None else services.trunk
        root = services.repo.root

        if name == services.trunk:
            error_and_exit("Trunk cannot be tracked")
        branch_tip = ctx.git.get_branch_head(root, name)
        if branch_tip is None:
            error_and_exit(f"Branch '{name}' does not exist")
        parent_tip = ctx.git.get_branch_head(root, parent_name)
        if parent_tip is None:
            error_and_exit(f"Parent branch '{parent_name}' does not exist")
        if parent_name == name:
            error_and_exit("A branch cannot be its own parent")
        if parent_name != services.trunk and not stack.is_tracked(parent_name):
            error_and_exit(f"Parent '{parent_name}' is not tracked")
        if stack.is_tracked(name) and parent_name in {b.name for b in stack.descendants(name)}:
            error_and_exit(f"'{parent_name}' is a descendant of '{name}'; that would form a cycle")

        # The fork point keeps restack from replaying the parent's own commits.
        fork_point = ctx.git.get_merge_base(root, parent_tip, branch_tip) or parent_tip

        handle = services.transactions.begin("track", [name])
        services.store.write(name, parent_name, fork_point)
        services.transactions.commit(handle)
        user_output(
            click.style("✓ ", fg="green") + f"Tracking '{name}' with parent '{parent_name}'"
        )


@branch_group.command("untrack")
@click.argument("branch", required=False)
@click.pass_obj
def branch_untrack(ctx: StackContext, branch: str | None) -> None:
    """Stop tracking BRANCH. Its children move to BRANCH's parent."""
    with stackwork_errors():
        services = build_services(ctx)
        stack = services.session.stack
        name = branch if branch is not None else current_branch_or_exit(ctx)
        entry = stack.entry(name)
        children = stack.children_of(name)

        handle = services.transactions.begin("untrack", [name, *children])
        for child in children:
            # Children keep the untracked branch's commits.
            services.store.write(child, entry.parent, entry.parent_revision)
        services.store.delete(name)
        services.transactions.commit(handle)
        user_output(click.style("✓ ", fg="green") + f"Stopped tracking '{name}'")


@branch_group.command("delete")
@click.argument("branch")
@click.option("--force", "-f", is_flag=True, help="Delete even if the branch is not merged.")
@click.pass_obj
def branch_delete(ctx: StackContext, branch: str, force: bool) -> None:
    """Delete BRANCH and re-parent its children onto BRANCH's parent.

    Children are re-parented so that the next restack drops BRANCH's commits
    from them.
    """
    with stackwork_errors():
        services = build_services(ctx)
        stack = services.session.stack
        root = services.repo.root

        if branch == services.trunk:
            error_and_exit("Trunk cannot be deleted")
        tip = ctx.git.get_branch_head(root, branch)
        if tip is None:
            error_and_exit(f"Branch '{branch}' does not exist")
        worktree = find_worktree_for_branch(ctx.git.list_worktrees(root), branch)
        if worktree is not None:
            error_and_exit(f"Branch '{branch}' is checked out in {worktree}")

        tracked = stack.is_tracked(branch)
        new_parent = stack.entry(branch).parent if tracked else services.trunk
        children = stack.children_of(branch) if tracked else []

        parent_tip = ctx.git.get_branch_head(root, new_parent)
        merged = parent_tip is not None and ctx.git.is_ancestor(root, tip, parent_tip)
        if not merged and not force:
            error_and_exit(
                f"'{branch}' is not merged into '{new_parent}'. Use --force to delete it anyway."
            )

        handle = services.transactions.begin("branch-delete", [branch, *children])
        ctx.git.delete_branch(root, branch, force=True)
        for child in children:
            services.store.write(child, new_parent, tip)
        if tracked:
            services.store.delete(branch)
        services.transactions.commit(handle)

        user_output(click.style("✓ ", fg="green") + f"Deleted '{branch}'")
        for child in children:
            user_output(f"  '{child}' now stacks on '{new_parent}'; run 'stackwork restack'")
