"""Shared wiring for commands that operate on a repository."""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from stackwork.cli.output import error_and_exit
from stackwork.core.context import StackContext
from stackwork.core.diff_cache import StackSession
from stackwork.core.errors import StackworkError
from stackwork.core.metadata import GitRefMetadataStore, MetadataStore
from stackwork.core.repo_discovery import NoRepoSentinel, RepoContext
from stackwork.core.restack import RestackEngine
from stackwork.core.transaction import TransactionManager


@dataclass(frozen=True)
class RepoServices:
    """Core objects bound to one repository for the duration of a command."""

    repo: RepoContext
    trunk: str
    store: MetadataStore
    transactions: TransactionManager
    engine: RestackEngine
    session: StackSession


def require_repo(ctx: StackContext) -> RepoContext:
    if isinstance(ctx.repo, NoRepoSentinel):
        error_and_exit(ctx.repo.message)
    return ctx.repo


def resolve_trunk(ctx: StackContext, repo: RepoContext) -> str:
    if ctx.trunk_branch is not None:
        return ctx.trunk_branch
    return ctx.git.get_trunk_branch(repo.root)


def build_services(ctx: StackContext) -> RepoServices:
    repo = require_repo(ctx)
    trunk = resolve_trunk(ctx, repo)
    store = GitRefMetadataStore(ctx.git, repo.root)
    transactions = TransactionManager(
        git=ctx.git,
        store=store,
        repo_root=repo.root,
        ops_dir=repo.state_dir,
        time=ctx.time,
        remote=ctx.global_config.remote,
    )
    engine = RestackEngine(
        git=ctx.git,
        store=store,
        transactions=transactions,
        repo_root=repo.root,
        cwd=ctx.cwd,
        trunk=trunk,
        state_path=repo.restack_state_path,
    )
    session = StackSession(git=ctx.git, store=store, repo_root=repo.root, trunk=trunk)
    return RepoServices(
        repo=repo,
        trunk=trunk,
        store=store,
        transactions=transactions,
        engine=engine,
        session=session,
    )


def current_branch_or_exit(ctx: StackContext) -> str:
    branch = ctx.git.get_current_branch(ctx.cwd)
    if branch is None:
        error_and_exit("HEAD is detached; pass a branch name explicitly")
    return branch


@contextmanager
def stackwork_errors() -> Iterator[None]:
    """Render core errors as a red `Error:` line and exit 1."""
    try:
        yield
    except StackworkError as e:
        error_and_exit(str(e))
