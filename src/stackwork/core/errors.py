"""Typed errors raised by the stackwork core.

Commands catch StackworkError at the CLI boundary and render the message.
Conflicted rebases and partially applied undo/redo are results, not errors.
"""

from pathlib import Path


class StackworkError(Exception):
    """Base class for all errors surfaced to stackwork commands."""


class MetadataWriteError(StackworkError):
    """A metadata ref could not be written or deleted."""

    def __init__(self, branch: str, detail: str) -> None:
        super().__init__(f"Failed to update stack metadata for '{branch}': {detail}")
        self.branch = branch
        self.detail = detail


class StackCorruptionError(StackworkError):
    """The stored parent relationships cannot form a forest rooted at trunk."""

    def __init__(self, message: str, chain: list[str]) -> None:
        super().__init__(f"{message}: {' -> '.join(chain)}")
        self.chain = chain


class DirtyWorktreeError(StackworkError):
    """A worktree that must be rebased in has uncommitted changes."""

    def __init__(self, branch: str, path: Path) -> None:
        super().__init__(
            f"Worktree {path} (branch '{branch}') has uncommitted changes. "
            "Commit or stash them, or retry with --auto-stash."
        )
        self.branch = branch
        self.path = path


class RestackInProgressError(StackworkError):
    """A paused restack must be continued or aborted first."""

    def __init__(self, branch: str) -> None:
        super().__init__(
            f"A restack is paused on '{branch}'. Run 'stackwork continue' or 'stackwork abort'."
        )
        self.branch = branch


class NoRestackInProgressError(StackworkError):
    """continue/abort was requested without a paused restack."""

    def __init__(self) -> None:
        super().__init__("No restack in progress")


class BranchNotTrackedError(StackworkError):
    """The branch has no stack metadata."""

    def __init__(self, branch: str) -> None:
        super().__init__(f"Branch '{branch}' is not tracked")
        self.branch = branch


class OperationNotFoundError(StackworkError):
    """No receipt or backup refs exist for the requested operation."""

    def __init__(self, operation_id: str) -> None:
        super().__init__(f"Operation '{operation_id}' not found")
        self.operation_id = operation_id


class NothingToUndoError(StackworkError):
    def __init__(self) -> None:
        super().__init__("Nothing to undo")


class NothingToRedoError(StackworkError):
    def __init__(self, reason: str = "Nothing to redo") -> None:
        super().__init__(reason)
