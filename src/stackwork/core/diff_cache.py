"""Per-branch diff memoization keyed by (parent tip, branch tip)."""

from collections.abc import Callable
from pathlib import Path

from stackwork.core.git.abc import Git
from stackwork.core.metadata import MetadataStore
from stackwork.core.stack import Stack


class DiffCache:
    """Memoizes diff text for a branch against its parent.

    A key match is only trusted for the lifetime of one stack load; callers
    clear the cache whenever the stack is reloaded.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}

    def get_or_compute(self, parent_tip: str, branch_tip: str, compute: Callable[[], str]) -> str:
        key = (parent_tip, branch_tip)
        if key in self._entries:
            return self._entries[key]
        text = compute()
        self._entries[key] = text
        return text

    def invalidate_all(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def compute_branch_diff(
    git: Git, repo_root: Path, parent_tip: str, branch_tip: str, *, stat: bool
) -> str:
    """Diff a branch against its merge base with the parent (three-dot semantics)."""
    base = git.get_merge_base(repo_root, parent_tip, branch_tip)
    if base is None:
        base = parent_tip
    return git.get_diff(repo_root, base, branch_tip, stat=stat)


class StackSession:
    """Owns the loaded stack and its diff cache for the duration of a command."""

    def __init__(self, *, git: Git, store: MetadataStore, repo_root: Path, trunk: str) -> None:
        self._git = git
        self._store = store
        self._repo_root = repo_root
        self._trunk = trunk
        self._diff_cache = DiffCache()
        self._stack: Stack | None = None

    @property
    def stack(self) -> Stack:
        if self._stack is None:
            return self.reload()
        return self._stack

    def reload(self) -> Stack:
        self._stack = Stack.load(self._git, self._store, self._repo_root, self._trunk)
        self._diff_cache.invalidate_all()
        return self._stack

    def branch_diff(self, branch: str, *, stat: bool = False) -> str:
        """Diff of a tracked branch against its parent, served from the cache when possible."""
        stack = self.stack
        parent = stack.parent_of(branch)
        parent_tip = stack.branch(parent).tip
        branch_tip = stack.branch(branch).tip
        if parent_tip is None or branch_tip is None:
            return ""
        # Stat and full diff share one tip pair, so the mode is folded into the key.
        key_tip = f"{branch_tip}:stat" if stat else branch_tip
        return self._diff_cache.get_or_compute(
            parent_tip,
            key_tip,
            lambda: compute_branch_diff(
                self._git, self._repo_root, parent_tip, branch_tip, stat=stat
            ),
        )
