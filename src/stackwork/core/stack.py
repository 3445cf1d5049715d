"""In-memory dependency forest of tracked branches.

The forest is rebuilt from the metadata store and the set of local branches on
every load. It is read-only: mutations go through the metadata store and a new
load.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from stackwork.core.errors import BranchNotTrackedError, MetadataWriteError, StackCorruptionError
from stackwork.core.git.abc import Git
from stackwork.core.metadata import MetadataStore, StackEntry

logger = logging.getLogger(__name__)


class RestackStatus(Enum):
    """Whether a branch sits on its parent's current tip."""

    UP_TO_DATE = "up_to_date"
    NEEDS_RESTACK = "needs_restack"
    PARENT_MISSING = "parent_missing"


def restack_status(entry: StackEntry, parent_tip: str | None) -> RestackStatus:
    """Single source of truth for "does this branch need restacking".

    Args:
        entry: The branch's stored metadata
        parent_tip: Current tip of the recorded parent, None if the parent is gone

    Returns:
        UP_TO_DATE when the recorded parent revision equals the parent's tip,
        PARENT_MISSING when the parent branch no longer exists,
        NEEDS_RESTACK otherwise
    """
    if parent_tip is None:
        return RestackStatus.PARENT_MISSING
    if entry.parent_revision == parent_tip:
        return RestackStatus.UP_TO_DATE
    return RestackStatus.NEEDS_RESTACK


@dataclass(frozen=True)
class Branch:
    """A node of the forest."""

    name: str
    exists: bool
    tip: str | None


class Stack:
    """Forest of tracked branches rooted at trunk.

    Use Stack.load() to build one from repository state. Traversal results are
    plain lists, so they are finite and can be iterated any number of times.
    """

    def __init__(
        self,
        *,
        trunk: str,
        heads: dict[str, str],
        entries: dict[str, StackEntry],
        pruned: list[str],
    ) -> None:
        self.trunk = trunk
        self.pruned = pruned
        self._heads = heads
        self._entries = entries

        # Parent used for traversal. Entries whose recorded parent is gone or
        # untracked hang off trunk; stored metadata is left untouched.
        self._parents: dict[str, str] = {}
        for name, entry in entries.items():
            if entry.parent == trunk or entry.parent in entries:
                self._parents[name] = entry.parent
            else:
                logger.debug(
                    "Parent '%s' of '%s' is not tracked; treating it as a child of %s",
                    entry.parent,
                    name,
                    trunk,
                )
                self._parents[name] = trunk

        self._children: dict[str, list[str]] = {}
        for name, parent in self._parents.items():
            self._children.setdefault(parent, []).append(name)
        for children in self._children.values():
            children.sort()

    @staticmethod
    def load(git: Git, store: MetadataStore, repo_root: Path, trunk: str) -> "Stack":
        """Build the forest from stored entries and local branches.

        Entries for branches that no longer exist locally are dropped and their
        metadata deleted on a best-effort basis.

        Raises:
            StackCorruptionError: If the stored parent pointers contain a cycle
        """
        heads = git.get_branch_heads(repo_root)
        entries: dict[str, StackEntry] = {}
        pruned: list[str] = []

        for entry in store.read_all():
            if entry.branch == trunk:
                logger.warning("Ignoring stack metadata recorded for trunk '%s'", trunk)
                continue
            if entry.branch not in heads:
                pruned.append(entry.branch)
                try:
                    store.delete(entry.branch)
                except MetadataWriteError as e:
                    logger.warning("Could not prune metadata for '%s': %s", entry.branch, e)
                continue
            entries[entry.branch] = entry

        _check_acyclic(entries, trunk)
        return Stack(trunk=trunk, heads=heads, entries=entries, pruned=pruned)

    # Lookups

    def is_tracked(self, name: str) -> bool:
        return name in self._entries

    def entry(self, name: str) -> StackEntry:
        if name not in self._entries:
            raise BranchNotTrackedError(name)
        return self._entries[name]

    def branch(self, name: str) -> Branch:
        tip = self._heads.get(name)
        return Branch(name=name, exists=tip is not None, tip=tip)

    def parent_of(self, name: str) -> str:
        """Traversal parent of a tracked branch."""
        if name not in self._parents:
            raise BranchNotTrackedError(name)
        return self._parents[name]

    def children_of(self, name: str) -> list[str]:
        return list(self._children.get(name, []))

    def status(self, name: str) -> RestackStatus:
        entry = self.entry(name)
        return restack_status(entry, self._heads.get(entry.parent))

    # Traversal

    def ancestors(self, name: str) -> list[Branch]:
        """Branches from trunk down to, but excluding, `name`."""
        if name == self.trunk:
            return []
        chain: list[str] = []
        current = self.parent_of(name)
        while current != self.trunk:
            chain.append(current)
            current = self._parents[current]
        chain.append(self.trunk)
        chain.reverse()
        return [self.branch(n) for n in chain]

    def descendants(self, name: str) -> list[Branch]:
        """Pre-order list of every branch below `name`."""
        if name != self.trunk and name not in self._entries:
            raise BranchNotTrackedError(name)
        result: list[Branch] = []
        pending = list(reversed(self._children.get(name, [])))
        while pending:
            current = pending.pop()
            result.append(self.branch(current))
            pending.extend(reversed(self._children.get(current, [])))
        return result

    def stack_of(self, name: str) -> list[Branch]:
        """Every branch in the trunk-rooted stack containing `name`, in pre-order.

        For trunk itself this is every tracked branch.
        """
        if name == self.trunk:
            return self.descendants(self.trunk)
        ancestors = self.ancestors(name)
        root = ancestors[1].name if len(ancestors) > 1 else name
        return [self.branch(root), *self.descendants(root)]

    def tracked_branches(self) -> list[str]:
        """All tracked branches in pre-order from trunk."""
        return [b.name for b in self.descendants(self.trunk)]


def _check_acyclic(entries: dict[str, StackEntry], trunk: str) -> None:
    verified: set[str] = set()
    for start in sorted(entries):
        path: list[str] = []
        on_path: set[str] = set()
        current = start
        while current in entries and current != trunk and current not in verified:
            if current in on_path:
                cycle = path[path.index(current) :] + [current]
                raise StackCorruptionError("Cycle in stack metadata", cycle)
            on_path.add(current)
            path.append(current)
            current = entries[current].parent
        verified.update(on_path)
