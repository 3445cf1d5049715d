"""Restack engine: bring tracked branches back onto their parents' tips.

Each branch moves through PENDING -> REBASING -> CLEAN | CONFLICTED. A conflict
halts the whole run and persists a RestackState so that continue_restack()
picks up at the stalled branch and abort_restack() gives up on it. Every run is
wrapped in a transaction, so the whole run can be undone afterwards.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from stackwork.core.errors import (
    DirtyWorktreeError,
    NoRestackInProgressError,
    RestackInProgressError,
    StackworkError,
)
from stackwork.core.git.abc import Git, find_worktree_containing_path, find_worktree_for_branch
from stackwork.core.metadata import MetadataStore
from stackwork.core.stack import RestackStatus, Stack, restack_status
from stackwork.core.transaction import TransactionHandle, TransactionManager

logger = logging.getLogger(__name__)


class RestackScope(Enum):
    BRANCH = "branch"
    UPSTACK = "upstack"
    STACK = "stack"
    ALL = "all"


class BranchRestackState(Enum):
    PENDING = "pending"
    REBASING = "rebasing"
    CLEAN = "clean"
    CONFLICTED = "conflicted"
    ABORTED = "aborted"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RestackOutcome:
    """Terminal state of one branch in a run.

    rebased is False for branches that were already up to date.
    """

    branch: str
    state: BranchRestackState
    rebased: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"branch": self.branch, "state": self.state.value, "rebased": self.rebased}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RestackOutcome":
        return RestackOutcome(
            branch=data["branch"],
            state=BranchRestackState(data["state"]),
            rebased=bool(data.get("rebased", False)),
        )


@dataclass(frozen=True)
class RestackConflict:
    branch: str
    parent: str
    worktree: Path
    files: list[str]


@dataclass(frozen=True)
class RestackResult:
    operation_id: str
    outcomes: list[RestackOutcome]
    conflict: RestackConflict | None = None
    unrestored_stashes: list[Path] = field(default_factory=list)
    aborted: bool = False

    @property
    def rebased(self) -> list[str]:
        return [o.branch for o in self.outcomes if o.rebased]

    @property
    def skipped(self) -> list[str]:
        return [o.branch for o in self.outcomes if o.state == BranchRestackState.SKIPPED]

    @property
    def completed(self) -> bool:
        return self.conflict is None and not self.aborted


@dataclass
class RestackState:
    """Persisted record of a run paused on a conflict."""

    operation_id: str
    kind: str
    branch: str
    parent: str
    onto: str
    worktree: Path
    remaining: list[str]
    outcomes: list[RestackOutcome]
    invoking_worktree: Path
    original_branch: str | None
    original_head: str | None
    stashed: dict[Path, str]
    auto_stash: bool
    conflicted_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind,
            "branch": self.branch,
            "parent": self.parent,
            "onto": self.onto,
            "worktree": str(self.worktree),
            "remaining": self.remaining,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "invoking_worktree": str(self.invoking_worktree),
            "original_branch": self.original_branch,
            "original_head": self.original_head,
            "stashed": {str(path): stash for path, stash in self.stashed.items()},
            "auto_stash": self.auto_stash,
            "conflicted_files": self.conflicted_files,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RestackState":
        return RestackState(
            operation_id=data["operation_id"],
            kind=data["kind"],
            branch=data["branch"],
            parent=data["parent"],
            onto=data["onto"],
            worktree=Path(data["worktree"]),
            remaining=list(data["remaining"]),
            outcomes=[RestackOutcome.from_dict(o) for o in data.get("outcomes", [])],
            invoking_worktree=Path(data["invoking_worktree"]),
            original_branch=data.get("original_branch"),
            original_head=data.get("original_head"),
            stashed={Path(path): stash for path, stash in data.get("stashed", {}).items()},
            auto_stash=bool(data.get("auto_stash", False)),
            conflicted_files=list(data.get("conflicted_files", [])),
        )


def load_restack_state(state_path: Path) -> RestackState | None:
    """Read the paused-run record, or None if no restack is paused."""
    if not state_path.exists():
        return None
    with open(state_path, encoding="utf-8") as f:
        return RestackState.from_dict(json.load(f))


def save_restack_state(state_path: Path, state: RestackState) -> None:
    state_path.parent.mkdir(parents=True, exist_ok=True)
    with open(state_path, "w", encoding="utf-8") as f:
        json.dump(state.to_dict(), f, indent=2)


def clear_restack_state(state_path: Path) -> None:
    if state_path.exists():
        state_path.unlink()


def ensure_no_restack_in_progress(state_path: Path) -> None:
    """Raise RestackInProgressError if a paused run must be resolved first."""
    state = load_restack_state(state_path)
    if state is not None:
        raise RestackInProgressError(state.branch)


@dataclass
class _Run:
    """Mutable bookkeeping of a run between branches."""

    handle: TransactionHandle
    remaining: list[str]
    outcomes: list[RestackOutcome]
    invoking_worktree: Path
    original_branch: str | None
    original_head: str | None
    # worktree -> commit id of the stash entry made there
    stashed: dict[Path, str]
    auto_stash: bool


class RestackEngine:
    """Single entry point for restack, sync and cascade."""

    def __init__(
        self,
        *,
        git: Git,
        store: MetadataStore,
        transactions: TransactionManager,
        repo_root: Path,
        cwd: Path,
        trunk: str,
        state_path: Path,
    ) -> None:
        self._git = git
        self._store = store
        self._transactions = transactions
        self._repo_root = repo_root
        self._cwd = cwd
        self._trunk = trunk
        self._state_path = state_path

    def restack(
        self,
        branch: str,
        scope: RestackScope,
        *,
        auto_stash: bool = False,
        kind: str = "restack",
    ) -> RestackResult:
        """Restack `branch` and the branches selected by `scope`.

        Raises:
            RestackInProgressError: If an earlier run is paused on a conflict
            BranchNotTrackedError: If `branch` is neither tracked nor trunk
            DirtyWorktreeError: If a worktree to rebase in is dirty and auto_stash is off
        """
        ensure_no_restack_in_progress(self._state_path)

        stack = Stack.load(self._git, self._store, self._repo_root, self._trunk)
        work = self._work_list(stack, branch, scope)
        logger.debug("Restack work list for %s (%s): %s", branch, scope.value, work)

        invoking_worktree = self._invoking_worktree()
        if not auto_stash:
            self._check_clean(stack, work, invoking_worktree)

        handle = self._transactions.begin(kind, work)
        run = _Run(
            handle=handle,
            remaining=list(work),
            outcomes=[],
            invoking_worktree=invoking_worktree,
            original_branch=self._git.get_current_branch(invoking_worktree),
            original_head=self._git.get_head_commit(invoking_worktree),
            stashed={},
            auto_stash=auto_stash,
        )
        return self._drive(run)

    def continue_restack(self) -> RestackResult:
        """Resume a paused run at the stalled branch.

        If the user already finished the rebase by hand, the branch is recorded
        as rebased. If the rebase was given up outside the tool, the branch is
        attempted again.
        """
        state = load_restack_state(self._state_path)
        if state is None:
            raise NoRestackInProgressError()

        run = self._run_from_state(state)

        if self._git.is_rebase_in_progress(state.worktree):
            result = self._git.continue_rebase(state.worktree)
            if result.has_conflicts:
                state.conflicted_files = result.conflicted_files
                save_restack_state(self._state_path, state)
                return RestackResult(
                    operation_id=state.operation_id,
                    outcomes=list(state.outcomes),
                    conflict=RestackConflict(
                        branch=state.branch,
                        parent=state.parent,
                        worktree=state.worktree,
                        files=result.conflicted_files,
                    ),
                )

        tip = self._git.get_branch_head(self._repo_root, state.branch)
        if tip is not None and self._git.is_ancestor(self._repo_root, state.onto, tip):
            self._store.write(state.branch, state.parent, state.onto)
            run.outcomes.append(
                RestackOutcome(branch=state.branch, state=BranchRestackState.CLEAN, rebased=True)
            )
            run.remaining.pop(0)

        clear_restack_state(self._state_path)
        return self._drive(run)

    def abort_restack(self) -> RestackResult:
        """Abort the stalled rebase and end the run.

        The stalled branch keeps its pre-rebase tip and metadata. Branches
        already rebased earlier in the run stay rebased; undo reverts them.
        """
        state = load_restack_state(self._state_path)
        if state is None:
            raise NoRestackInProgressError()

        if self._git.is_rebase_in_progress(state.worktree):
            self._git.abort_rebase(state.worktree)

        run = self._run_from_state(state)
        run.outcomes.append(RestackOutcome(branch=state.branch, state=BranchRestackState.ABORTED))
        run.remaining = []

        clear_restack_state(self._state_path)
        result = self._finish(run)
        return RestackResult(
            operation_id=result.operation_id,
            outcomes=result.outcomes,
            unrestored_stashes=result.unrestored_stashes,
            aborted=True,
        )

    # ------------------------------------------------------------------

    def _work_list(self, stack: Stack, branch: str, scope: RestackScope) -> list[str]:
        if scope == RestackScope.ALL or (branch == self._trunk and scope != RestackScope.BRANCH):
            return stack.tracked_branches()
        if branch == self._trunk:
            return []

        stack.entry(branch)
        if scope == RestackScope.BRANCH:
            return [branch]
        if scope == RestackScope.UPSTACK:
            return [branch, *[b.name for b in stack.descendants(branch)]]
        return [b.name for b in stack.stack_of(branch)]

    def _invoking_worktree(self) -> Path:
        worktrees = self._git.list_worktrees(self._repo_root)
        found = find_worktree_containing_path(worktrees, self._cwd.resolve())
        return found if found is not None else self._cwd

    def _check_clean(self, stack: Stack, work: list[str], invoking_worktree: Path) -> None:
        """Fail before any mutation if a worktree that will be rebased in is dirty."""
        affected: set[str] = set()
        for name in work:
            status = stack.status(name)
            if status == RestackStatus.NEEDS_RESTACK or (
                status != RestackStatus.PARENT_MISSING and stack.parent_of(name) in affected
            ):
                affected.add(name)

        worktrees = self._git.list_worktrees(self._repo_root)
        checked: set[Path] = set()
        for name in work:
            if name not in affected:
                continue
            target = find_worktree_for_branch(worktrees, name) or invoking_worktree
            if target in checked:
                continue
            checked.add(target)
            if self._git.has_uncommitted_changes(target):
                raise DirtyWorktreeError(name, target)

    def _run_from_state(self, state: RestackState) -> _Run:
        return _Run(
            handle=self._transactions.resume(state.operation_id),
            remaining=list(state.remaining),
            outcomes=list(state.outcomes),
            invoking_worktree=state.invoking_worktree,
            original_branch=state.original_branch,
            original_head=state.original_head,
            stashed=dict(state.stashed),
            auto_stash=state.auto_stash,
        )

    def _drive(self, run: _Run) -> RestackResult:
        try:
            while run.remaining:
                name = run.remaining[0]
                outcome, conflict = self._restack_one(run, name)
                if conflict is not None:
                    return self._pause(run, conflict)
                run.remaining.pop(0)
                run.outcomes.append(outcome)
        except (StackworkError, RuntimeError):
            # Keep the receipt usable for undo before surfacing the failure.
            self._finish(run)
            raise
        return self._finish(run)

    def _restack_one(
        self, run: _Run, name: str
    ) -> tuple[RestackOutcome, RestackConflict | None]:
        entry = self._store.read(name)
        if entry is None:
            logger.warning("'%s' is no longer tracked; skipping", name)
            return RestackOutcome(branch=name, state=BranchRestackState.SKIPPED), None

        parent_tip = self._git.get_branch_head(self._repo_root, entry.parent)
        status = restack_status(entry, parent_tip)
        if status == RestackStatus.UP_TO_DATE:
            return RestackOutcome(branch=name, state=BranchRestackState.CLEAN), None
        if status == RestackStatus.PARENT_MISSING or parent_tip is None:
            logger.warning("Parent '%s' of '%s' no longer exists; skipping", entry.parent, name)
            return RestackOutcome(branch=name, state=BranchRestackState.SKIPPED), None

        upstream = self._git.resolve_commit(self._repo_root, entry.parent_revision)
        if upstream is None:
            upstream = self._git.get_merge_base(self._repo_root, parent_tip, name)
        if upstream is None:
            raise StackworkError(f"'{name}' shares no history with its parent '{entry.parent}'")

        worktrees = self._git.list_worktrees(self._repo_root)
        target = find_worktree_for_branch(worktrees, name) or run.invoking_worktree
        self._prepare_worktree(run, name, target)

        logger.debug("Rebasing %s onto %s (upstream %s) in %s", name, parent_tip, upstream, target)
        result = self._git.rebase_onto(target, name, onto=parent_tip, upstream=upstream)
        if result.has_conflicts:
            conflict = RestackConflict(
                branch=name, parent=entry.parent, worktree=target, files=result.conflicted_files
            )
            outcome = RestackOutcome(branch=name, state=BranchRestackState.CONFLICTED)
            return outcome, conflict

        self._store.write(name, entry.parent, parent_tip)
        return RestackOutcome(branch=name, state=BranchRestackState.CLEAN, rebased=True), None

    def _prepare_worktree(self, run: _Run, branch: str, target: Path) -> None:
        if target in run.stashed or not self._git.has_uncommitted_changes(target):
            return
        if not run.auto_stash:
            raise DirtyWorktreeError(branch, target)
        message = f"stackwork auto-stash ({run.handle.operation_id})"
        stash = self._git.stash_push(target, message)
        if stash is not None:
            logger.debug("Stashed changes in %s as %s", target, stash)
            run.stashed[target] = stash

    def _pause(self, run: _Run, conflict: RestackConflict) -> RestackResult:
        onto = self._git.get_branch_head(self._repo_root, conflict.parent)
        state = RestackState(
            operation_id=run.handle.operation_id,
            kind=run.handle.kind,
            branch=conflict.branch,
            parent=conflict.parent,
            onto=onto or "",
            worktree=conflict.worktree,
            remaining=run.remaining,
            outcomes=run.outcomes,
            invoking_worktree=run.invoking_worktree,
            original_branch=run.original_branch,
            original_head=run.original_head,
            stashed=run.stashed,
            auto_stash=run.auto_stash,
            conflicted_files=conflict.files,
        )
        save_restack_state(self._state_path, state)
        self._transactions.commit(run.handle)
        logger.debug("Restack paused on %s; state saved to %s", conflict.branch, self._state_path)
        return RestackResult(
            operation_id=run.handle.operation_id,
            outcomes=list(run.outcomes),
            conflict=conflict,
        )

    def _finish(self, run: _Run) -> RestackResult:
        self._return_to_original_branch(run)

        unrestored: list[Path] = []
        for path, stash in run.stashed.items():
            if not self._git.stash_apply(path, stash):
                logger.warning(
                    "Could not re-apply auto-stash %s in %s; it is kept in git stash", stash, path
                )
                unrestored.append(path)
                continue
            try:
                self._git.stash_drop(path, stash)
            except RuntimeError as e:
                logger.warning("Re-applied auto-stash %s but could not drop it: %s", stash, e)

        self._transactions.commit(run.handle)
        return RestackResult(
            operation_id=run.handle.operation_id,
            outcomes=list(run.outcomes),
            unrestored_stashes=unrestored,
        )

    def _return_to_original_branch(self, run: _Run) -> None:
        if run.original_branch is None:
            self._return_to_original_head(run)
            return
        if self._git.get_current_branch(run.invoking_worktree) == run.original_branch:
            return
        try:
            self._git.checkout_branch(run.invoking_worktree, run.original_branch)
        except RuntimeError as e:
            logger.warning("Could not check out '%s' again: %s", run.original_branch, e)

    def _return_to_original_head(self, run: _Run) -> None:
        # Rebasing a branch checks it out, so a detached HEAD must be restored
        if run.original_head is None:
            return
        worktree = run.invoking_worktree
        if self._git.get_current_branch(worktree) is None:
            if self._git.get_head_commit(worktree) == run.original_head:
                return
        try:
            self._git.checkout_detached(worktree, run.original_head)
        except RuntimeError as e:
            logger.warning("Could not detach HEAD at %s again: %s", run.original_head, e)
