import click

from stackwork.cli.commands.restack import finish_restack, resolve_auto_stash
from stackwork.cli.core import RepoServices, build_services, stackwork_errors
from stackwork.cli.output import user_output
from stackwork.core.context import StackContext
from stackwork.core.git.abc import find_worktree_for_branch
from stackwork.core.restack import RestackScope, ensure_no_restack_in_progress


def remote_trunk_tip(ctx: StackContext, services: RepoServices) -> str | None:
    remote = ctx.global_config.remote
    return ctx.git.resolve_commit(services.repo.root, f"refs/remotes/{remote}/{services.trunk}")


def update_trunk(ctx: StackContext, services: RepoServices) -> bool:
    """Fast-forward local trunk to the fetched remote trunk.

    Returns:
        True if trunk moved
    """
    root = services.repo.root
    trunk = services.trunk
    remote_tip = remote_trunk_tip(ctx, services)
    local_tip = ctx.git.get_branch_head(root, trunk)

    if remote_tip is None or local_tip == remote_tip:
        return False
    if local_tip is not None and not ctx.git.is_ancestor(root, local_tip, remote_tip):
        user_output(
            click.style("Warning: ", fg="yellow")
            + f"'{trunk}' has diverged from {ctx.global_config.remote}/{trunk}; leaving it alone"
        )
        return False

    worktree = find_worktree_for_branch(ctx.git.list_worktrees(root), trunk)
    if worktree is None:
        ctx.git.update_ref(root, f"refs/heads/{trunk}", remote_tip)
    elif ctx.git.has_uncommitted_changes(worktree):
        user_output(
            click.style("Warning: ", fg="yellow")
            + f"'{trunk}' is checked out with uncommitted changes in {worktree}; not updating it"
        )
        return False
    else:
        ctx.git.merge_ff_only(worktree, remote_tip)
    return True


def find_merged_branches(ctx: StackContext, services: RepoServices, trunk_tip: str) -> list[str]:
    """Tracked branches whose tip is already contained in `trunk_tip`, children first."""
    stack = services.session.stack
    root = services.repo.root
    worktrees = ctx.git.list_worktrees(root)

    merged: list[str] = []
    for name in stack.tracked_branches():
        tip = stack.branch(name).tip
        if tip is None or tip == stack.entry(name).parent_revision:
            continue
        if find_worktree_for_branch(worktrees, name) is not None:
            continue
        if ctx.git.is_ancestor(root, tip, trunk_tip):
            merged.append(name)
    merged.reverse()
    return merged


@click.command("sync")
@click.option("--no-fetch", is_flag=True, help="Skip fetching trunk from the remote.")
@click.option("--delete-merged", is_flag=True, help="Delete tracked branches merged into trunk.")
@click.option("--no-restack", is_flag=True, help="Only update trunk and clean up.")
@click.option(
    "--auto-stash/--no-auto-stash",
    default=None,
    help="Stash uncommitted changes around the rebase (config: auto_stash).",
)
@click.pass_obj
def sync_cmd(
    ctx: StackContext,
    no_fetch: bool,
    delete_merged: bool,
    no_restack: bool,
    auto_stash: bool | None,
) -> None:
    """Update trunk from the remote and restack every tracked branch.

    Steps:
    1. Fetch trunk and fast-forward the local trunk branch
    2. Drop metadata of branches deleted outside stackwork
    3. With --delete-merged: delete branches already merged into trunk
    4. Restack all tracked branches
    """
    with stackwork_errors():
        services = build_services(ctx)
        ensure_no_restack_in_progress(services.repo.restack_state_path)
        remote = ctx.global_config.remote

        if not no_fetch:
            user_output(f"Fetching {remote}/{services.trunk}...")
            ctx.git.fetch_branch(services.repo.root, remote, services.trunk)

        stack = services.session.stack
        for name in stack.pruned:
            user_output(f"Dropped metadata of deleted branch '{name}'")

        merged: list[str] = []
        trunk_tip = remote_trunk_tip(ctx, services) or stack.branch(services.trunk).tip
        if delete_merged and trunk_tip is not None:
            merged = find_merged_branches(ctx, services, trunk_tip)
        children = [c for name in merged for c in stack.children_of(name) if c not in merged]

        handle = services.transactions.begin("sync", [services.trunk, *merged, *children])
        if update_trunk(ctx, services):
            user_output(click.style("✓ ", fg="green") + f"Updated '{services.trunk}'")

        for name in merged:
            new_parent = stack.entry(name).parent
            while new_parent in merged:
                new_parent = stack.entry(new_parent).parent
            tip = stack.branch(name).tip or stack.entry(name).parent_revision
            for child in stack.children_of(name):
                if child not in merged:
                    services.store.write(child, new_parent, tip)
            ctx.git.delete_branch(services.repo.root, name, force=True)
            services.store.delete(name)
            user_output(click.style("✓ ", fg="green") + f"Deleted merged branch '{name}'")
        services.transactions.commit(handle)

        if no_restack:
            return

        result = services.engine.restack(
            services.trunk,
            RestackScope.ALL,
            auto_stash=resolve_auto_stash(ctx, auto_stash),
            kind="sync",
        )
    finish_restack(ctx, result)
