"""High-level git operations interface.

This module provides a clean abstraction over git subprocess calls, making the
codebase more testable and maintainable.

Architecture:
- Git: Abstract base class defining the interface
- RealGit: Production implementation using subprocess
- FakeGit (tests/fakes/git.py): In-memory implementation for tests

Conventions:
- Read-only queries return None/False when git reports failure.
- Mutating operations raise RuntimeError on a non-zero exit status, never
  discard it. Rebase is the exception: a conflict is reported through
  RebaseResult because it is an expected, recoverable pause.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class WorktreeInfo:
    """Information about a single git worktree."""

    path: Path
    branch: str | None
    is_root: bool = False


@dataclass(frozen=True)
class RebaseResult:
    """Outcome of a rebase, continue, or similar history rewrite."""

    success: bool
    has_conflicts: bool
    conflicted_files: list[str] = field(default_factory=list)


def find_worktree_for_branch(worktrees: list[WorktreeInfo], branch: str) -> Path | None:
    """Find the path of the worktree that has the given branch checked out.

    Args:
        worktrees: List of worktrees to search
        branch: Branch name to find

    Returns:
        Path to the worktree with the branch checked out, or None if not found
    """
    for wt in worktrees:
        if wt.branch == branch:
            return wt.path
    return None


def find_worktree_containing_path(worktrees: list[WorktreeInfo], target_path: Path) -> Path | None:
    """Find which worktree contains the given path.

    Returns the most specific (deepest) match to handle nested worktrees correctly.
    """
    best_match: Path | None = None
    best_match_depth = -1

    for wt in worktrees:
        wt_path = wt.path.resolve()
        if target_path.is_relative_to(wt_path):
            depth = len(wt_path.parts)
            if depth > best_match_depth:
                best_match = wt_path
                best_match_depth = depth

    return best_match


# ============================================================================
# Abstract Interface
# ============================================================================


class Git(ABC):
    """Abstract interface for git operations.

    All implementations (real and fake) must implement this interface.
    This interface contains ONLY runtime operations - no test setup methods.
    """

    # Repository and worktree discovery

    @abstractmethod
    def list_worktrees(self, repo_root: Path) -> list[WorktreeInfo]:
        """List all worktrees in the repository."""
        ...

    @abstractmethod
    def get_current_branch(self, cwd: Path) -> str | None:
        """Get the currently checked-out branch, or None when HEAD is detached."""
        ...

    @abstractmethod
    def get_head_commit(self, cwd: Path) -> str | None:
        """Get the commit HEAD points at in the given worktree."""
        ...

    @abstractmethod
    def get_trunk_branch(self, repo_root: Path) -> str:
        """Get the trunk branch name for the repository.

        Detects trunk by checking git's remote HEAD reference. Falls back to
        checking for existence of common trunk branch names if detection fails.
        """
        ...

    @abstractmethod
    def get_git_common_dir(self, cwd: Path) -> Path | None:
        """Get the common git directory shared by all worktrees."""
        ...

    @abstractmethod
    def has_uncommitted_changes(self, cwd: Path) -> bool:
        """Check if a worktree has uncommitted changes.

        Uses git status --porcelain to detect any uncommitted changes.

        Args:
            cwd: Working directory to check

        Returns:
            True if there are any uncommitted changes (staged, modified, or untracked)
        """
        ...

    # Branches and commits

    @abstractmethod
    def get_branch_heads(self, repo_root: Path) -> dict[str, str]:
        """Map every local branch name to its commit SHA in a single call."""
        ...

    @abstractmethod
    def get_branch_head(self, repo_root: Path, branch: str) -> str | None:
        """Get the commit SHA at the head of a branch.

        Returns:
            Commit SHA as a string, or None if branch doesn't exist.
        """
        ...

    @abstractmethod
    def resolve_commit(self, repo_root: Path, rev: str) -> str | None:
        """Resolve any revision to a commit SHA, or None if it does not name a commit."""
        ...

    @abstractmethod
    def get_merge_base(self, repo_root: Path, left: str, right: str) -> str | None:
        """Get the best common ancestor of two revisions, or None if unrelated."""
        ...

    @abstractmethod
    def is_ancestor(self, repo_root: Path, ancestor: str, descendant: str) -> bool:
        """Check whether `ancestor` is reachable from `descendant`."""
        ...

    @abstractmethod
    def count_commits(self, repo_root: Path, base: str, head: str) -> int:
        """Count commits reachable from `head` but not from `base`."""
        ...

    @abstractmethod
    def checkout_branch(self, cwd: Path, branch: str) -> None:
        """Checkout a branch in the given directory."""
        ...

    @abstractmethod
    def checkout_detached(self, cwd: Path, commit: str) -> None:
        """Detach HEAD at `commit` in the given directory."""
        ...

    @abstractmethod
    def create_branch(self, cwd: Path, branch_name: str, start_point: str) -> None:
        """Create a new branch without checking it out.

        Args:
            cwd: Working directory to run command in
            branch_name: Name of the branch to create
            start_point: Commit/branch to base the new branch on
        """
        ...

    @abstractmethod
    def delete_branch(self, cwd: Path, branch_name: str, *, force: bool) -> None:
        """Delete a local branch.

        Args:
            cwd: Working directory to run command in
            branch_name: Name of the branch to delete
            force: Use -D (force delete) instead of -d
        """
        ...

    @abstractmethod
    def reset_hard(self, cwd: Path, ref: str) -> None:
        """Move the checked-out branch of `cwd` to `ref`, resetting index and tree."""
        ...

    # Raw refs

    @abstractmethod
    def update_ref(self, repo_root: Path, ref: str, sha: str) -> None:
        """Point a fully qualified ref at a commit or object SHA."""
        ...

    @abstractmethod
    def delete_ref(self, repo_root: Path, ref: str) -> None:
        """Delete a fully qualified ref."""
        ...

    @abstractmethod
    def list_refs(self, repo_root: Path, prefix: str) -> dict[str, str]:
        """Map every ref under `prefix` to the object SHA it points at."""
        ...

    @abstractmethod
    def read_ref_blob(self, repo_root: Path, ref: str) -> str | None:
        """Read the content of the blob a ref points at.

        Returns:
            Blob content, or None if the ref does not exist.

        Raises:
            RuntimeError: If the ref exists but its object cannot be read
        """
        ...

    @abstractmethod
    def write_ref_blob(self, repo_root: Path, ref: str, content: str) -> None:
        """Store `content` as a blob and point `ref` at it."""
        ...

    # Rebase

    @abstractmethod
    def rebase_onto(self, cwd: Path, branch: str, *, onto: str, upstream: str) -> RebaseResult:
        """Replay commits of `branch` not reachable from `upstream` onto `onto`.

        Equivalent to `git rebase --onto <onto> <upstream> <branch>` run in `cwd`.
        Leaves the rebase in progress when conflicts occur.

        Raises:
            RuntimeError: If the rebase fails for any reason other than conflicts
        """
        ...

    @abstractmethod
    def continue_rebase(self, cwd: Path) -> RebaseResult:
        """Continue an in-progress rebase after conflicts were resolved."""
        ...

    @abstractmethod
    def abort_rebase(self, cwd: Path) -> None:
        """Abort an in-progress rebase, restoring the pre-rebase tip."""
        ...

    @abstractmethod
    def is_rebase_in_progress(self, cwd: Path) -> bool:
        """Check whether a rebase is stopped in the given worktree."""
        ...

    # Stash

    @abstractmethod
    def stash_push(self, cwd: Path, message: str) -> str | None:
        """Stash all local changes, including untracked files.

        The stash list is shared by every worktree of a repository, so callers
        keep the returned commit id to find their entry again.

        Returns:
            Commit id of the new stash entry, or None if there was nothing to stash
        """
        ...

    @abstractmethod
    def stash_apply(self, cwd: Path, stash: str) -> bool:
        """Re-apply the stash entry with the given commit id in `cwd`.

        Returns:
            True on success. False if applying conflicted; the entry is kept.
        """
        ...

    @abstractmethod
    def stash_drop(self, cwd: Path, stash: str) -> None:
        """Drop the stash entry with the given commit id."""
        ...

    # Diff

    @abstractmethod
    def get_diff(self, repo_root: Path, base: str, head: str, *, stat: bool) -> str:
        """Compute the diff (or diffstat) between two commits."""
        ...

    # Remotes

    @abstractmethod
    def push_branch(
        self, repo_root: Path, remote: str, source: str, branch: str, *, force: bool
    ) -> None:
        """Push `source` (a branch or SHA) to `refs/heads/<branch>` on `remote`."""
        ...

    @abstractmethod
    def fetch_branch(self, repo_root: Path, remote: str, branch: str) -> None:
        """Fetch a specific branch from a remote."""
        ...

    @abstractmethod
    def merge_ff_only(self, cwd: Path, ref: str) -> None:
        """Fast-forward the branch checked out in `cwd` to `ref`."""
        ...
