"""Application context with dependency injection."""

from dataclasses import dataclass
from pathlib import Path

from stackwork.core.config import GlobalConfig, load_global_config, read_trunk_from_pyproject
from stackwork.core.git.abc import Git
from stackwork.core.git.real import RealGit
from stackwork.core.repo_discovery import NoRepoSentinel, RepoContext, discover_repo_or_sentinel
from stackwork.core.time import RealTime, Time


@dataclass(frozen=True)
class StackContext:
    """Immutable context holding all dependencies for stackwork commands.

    Created at CLI entry point and threaded through the application.
    Frozen to prevent accidental modification at runtime.
    """

    git: Git
    time: Time
    cwd: Path  # Current working directory at CLI invocation
    global_config: GlobalConfig
    repo: RepoContext | NoRepoSentinel
    trunk_branch: str | None  # Explicit override from pyproject.toml

    @staticmethod
    def for_test(
        git: Git | None = None,
        time: Time | None = None,
        cwd: Path | None = None,
        global_config: GlobalConfig | None = None,
        repo: RepoContext | NoRepoSentinel | None = None,
        trunk_branch: str | None = None,
    ) -> "StackContext":
        """Create test context with fakes for anything not supplied.

        Example:
            >>> git = FakeGit(repo_root=tmp_path)
            >>> ctx = StackContext.for_test(git=git, cwd=tmp_path, repo=repo)
        """
        from tests.fakes.git import FakeGit
        from tests.fakes.time import FakeTime

        return StackContext(
            git=git if git is not None else FakeGit(),
            time=time if time is not None else FakeTime(),
            cwd=cwd if cwd is not None else Path("/test/default/cwd"),
            global_config=global_config if global_config is not None else GlobalConfig(),
            repo=repo if repo is not None else NoRepoSentinel(),
            trunk_branch=trunk_branch,
        )


def create_context() -> StackContext:
    """Create production context with real implementations.

    Called at CLI entry point to create the context for the entire
    command execution.
    """
    cwd = Path.cwd()
    git: Git = RealGit()
    global_config = load_global_config()
    repo = discover_repo_or_sentinel(cwd, git)

    trunk_branch = None
    if isinstance(repo, RepoContext):
        trunk_branch = read_trunk_from_pyproject(repo.root)

    return StackContext(
        git=git,
        time=RealTime(),
        cwd=cwd,
        global_config=global_config,
        repo=repo,
        trunk_branch=trunk_branch,
    )
