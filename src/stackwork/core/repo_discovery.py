"""Repository discovery functionality.

Discovers git repository information from a given path without requiring a
full StackContext.
"""

from dataclasses import dataclass
from pathlib import Path

from stackwork.core.git.abc import Git


@dataclass(frozen=True)
class RepoContext:
    """Represents a git repo root and where stackwork keeps its local state."""

    root: Path
    git_common_dir: Path
    state_dir: Path  # <git-common-dir>/stackwork

    @property
    def restack_state_path(self) -> Path:
        return self.state_dir / "restack-state.json"


@dataclass(frozen=True)
class NoRepoSentinel:
    """Sentinel value indicating execution outside a git repository.

    Commands that require repo context check for this sentinel and fail fast.
    """

    message: str = "Not inside a git repository"


def discover_repo_or_sentinel(cwd: Path, git: Git) -> RepoContext | NoRepoSentinel:
    """Find the repository containing `cwd`.

    Uses the common git dir so that linked worktrees resolve to the same
    state directory as the main worktree.
    """
    if not cwd.exists():
        return NoRepoSentinel(message=f"Start path '{cwd}' does not exist")

    git_common_dir = git.get_git_common_dir(cwd.resolve())
    if git_common_dir is None:
        return NoRepoSentinel()

    return RepoContext(
        root=git_common_dir.parent.resolve(),
        git_common_dir=git_common_dir,
        state_dir=git_common_dir / "stackwork",
    )
