"""Git operations subpackage.

This subpackage provides abstractions over git operations with support for
testing via fakes.
"""

from stackwork.core.git.abc import (
    Git,
    RebaseResult,
    WorktreeInfo,
    find_worktree_containing_path,
    find_worktree_for_branch,
)
from stackwork.core.git.real import RealGit

__all__ = [
    "Git",
    "RebaseResult",
    "RealGit",
    "WorktreeInfo",
    "find_worktree_containing_path",
    "find_worktree_for_branch",
]
