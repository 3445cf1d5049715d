"""Transactions around history-rewriting operations.

Every command that moves branch refs wraps its work like this:

    handle = tx.begin("restack", branches)   # backup refs + in-progress receipt
    ...mutate...
    tx.commit(handle)                        # finalized receipt

and the recorded states can later be re-applied with undo()/redo().

Storage:
- Backup refs: refs/stackwork-backup/<operation_id>/<branch> -> pre-operation commit.
  They are written before any mutation and are only deleted by prune().
- Receipts: <git-common-dir>/stackwork/operations/<operation_id>.json

Redo depth: redo walks back through at most MAX_REDO_DEPTH undone operations,
most recently undone first. Committing any new operation after an undo drops
the whole redo chain.
"""

import json
import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from stackwork.core.errors import (
    DirtyWorktreeError,
    NothingToRedoError,
    NothingToUndoError,
    OperationNotFoundError,
    StackworkError,
)
from stackwork.core.git.abc import Git, WorktreeInfo, find_worktree_for_branch
from stackwork.core.metadata import MetadataStore, StackEntry
from stackwork.core.time import Time

logger = logging.getLogger(__name__)

BACKUP_REF_PREFIX = "refs/stackwork-backup/"
MAX_REDO_DEPTH = 8


class OperationStatus(Enum):
    IN_PROGRESS = "in_progress"
    COMMITTED = "committed"
    UNDONE = "undone"


class ApplyStatus(Enum):
    """Overall result of undo/redo across all branches of an operation."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class BranchRecord:
    """Before/after state of one branch touched by an operation.

    pre/post are None when the branch did not exist at that point.
    metadata_captured is False for records rebuilt from backup refs alone,
    in which case metadata is left alone on undo.
    """

    branch: str
    pre: str | None
    post: str | None = None
    pre_metadata: StackEntry | None = None
    post_metadata: StackEntry | None = None
    pushed: bool = False
    metadata_captured: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch": self.branch,
            "pre": self.pre,
            "post": self.post,
            "pre_metadata": _entry_to_dict(self.pre_metadata),
            "post_metadata": _entry_to_dict(self.post_metadata),
            "pushed": self.pushed,
            "metadata_captured": self.metadata_captured,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "BranchRecord":
        branch = data["branch"]
        return BranchRecord(
            branch=branch,
            pre=data.get("pre"),
            post=data.get("post"),
            pre_metadata=_entry_from_dict(branch, data.get("pre_metadata")),
            post_metadata=_entry_from_dict(branch, data.get("post_metadata")),
            pushed=bool(data.get("pushed", False)),
            metadata_captured=bool(data.get("metadata_captured", True)),
        )


@dataclass
class OperationReceipt:
    """Persisted record of one history-rewriting operation."""

    operation_id: str
    kind: str
    status: OperationStatus
    started_at: str
    branches: list[BranchRecord] = field(default_factory=list)
    committed_at: str | None = None
    undone_at: str | None = None
    redone_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind,
            "status": self.status.value,
            "started_at": self.started_at,
            "committed_at": self.committed_at,
            "undone_at": self.undone_at,
            "redone_at": self.redone_at,
            "branches": [record.to_dict() for record in self.branches],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "OperationReceipt":
        return OperationReceipt(
            operation_id=data["operation_id"],
            kind=data["kind"],
            status=OperationStatus(data["status"]),
            started_at=data["started_at"],
            committed_at=data.get("committed_at"),
            undone_at=data.get("undone_at"),
            redone_at=data.get("redone_at"),
            branches=[BranchRecord.from_dict(b) for b in data.get("branches", [])],
        )


@dataclass(frozen=True)
class TransactionHandle:
    operation_id: str
    kind: str
    branches: tuple[str, ...]


@dataclass(frozen=True)
class BranchOutcome:
    """Result of restoring one branch.

    remote_ok is None when no remote update was attempted.
    """

    branch: str
    target: str | None
    local_ok: bool
    remote_ok: bool | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.local_ok and self.remote_ok is not False


@dataclass(frozen=True)
class ApplyResult:
    operation_id: str
    kind: str
    outcomes: list[BranchOutcome]

    @property
    def status(self) -> ApplyStatus:
        succeeded = [o for o in self.outcomes if o.ok]
        if len(succeeded) == len(self.outcomes):
            return ApplyStatus.COMPLETE
        if not succeeded:
            return ApplyStatus.FAILED
        return ApplyStatus.PARTIAL


def backup_ref(operation_id: str, branch: str) -> str:
    return f"{BACKUP_REF_PREFIX}{operation_id}/{branch}"


class TransactionManager:
    """Snapshots, receipts and undo/redo for history-rewriting operations."""

    def __init__(
        self,
        *,
        git: Git,
        store: MetadataStore,
        repo_root: Path,
        ops_dir: Path,
        time: Time,
        remote: str = "origin",
    ) -> None:
        self._git = git
        self._store = store
        self._repo_root = repo_root
        self._receipts_dir = ops_dir / "operations"
        self._time = time
        self._remote = remote

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def begin(self, kind: str, branches: list[str]) -> TransactionHandle:
        """Snapshot `branches` and persist backup refs before any mutation."""
        operation_id = self._new_operation_id()
        names = list(dict.fromkeys(branches))
        heads = self._git.get_branch_heads(self._repo_root)

        records: list[BranchRecord] = []
        for name in names:
            pre = heads.get(name)
            if pre is not None:
                self._git.update_ref(self._repo_root, backup_ref(operation_id, name), pre)
            records.append(
                BranchRecord(branch=name, pre=pre, pre_metadata=self._read_metadata(name))
            )

        receipt = OperationReceipt(
            operation_id=operation_id,
            kind=kind,
            status=OperationStatus.IN_PROGRESS,
            started_at=self._timestamp(),
            branches=records,
        )
        self._save_receipt(receipt)
        logger.debug("Began %s operation %s over %s", kind, operation_id, names)
        return TransactionHandle(operation_id=operation_id, kind=kind, branches=tuple(names))

    def resume(self, operation_id: str) -> TransactionHandle:
        """Rebuild the handle of an operation recorded earlier."""
        receipt = self._load_receipt(operation_id)
        if receipt is None:
            raise OperationNotFoundError(operation_id)
        return TransactionHandle(
            operation_id=receipt.operation_id,
            kind=receipt.kind,
            branches=tuple(r.branch for r in receipt.branches),
        )

    def commit(
        self,
        handle: TransactionHandle,
        post_states: dict[str, str | None] | None = None,
        pushed: tuple[str, ...] | list[str] = (),
    ) -> OperationReceipt:
        """Finalize the receipt. Safe to call repeatedly for the same operation.

        Args:
            handle: Handle returned by begin()/resume()
            post_states: Post-operation commit per branch. Defaults to current heads.
            pushed: Branches that were pushed to the remote during the operation
        """
        receipt = self._load_receipt(handle.operation_id)
        if receipt is None:
            raise OperationNotFoundError(handle.operation_id)
        if receipt.status == OperationStatus.UNDONE:
            logger.warning("Not committing %s: it was already undone", handle.operation_id)
            return receipt

        heads = self._git.get_branch_heads(self._repo_root) if post_states is None else {}
        for record in receipt.branches:
            if post_states is None:
                record.post = heads.get(record.branch)
            else:
                record.post = post_states.get(record.branch, record.post)
            record.post_metadata = self._read_metadata(record.branch)
            record.pushed = record.pushed or record.branch in pushed

        receipt.status = OperationStatus.COMMITTED
        if receipt.committed_at is None:
            receipt.committed_at = self._timestamp()
        self._save_receipt(receipt)
        logger.debug("Committed operation %s", handle.operation_id)
        return receipt

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    def undo(self, operation_id: str | None = None, *, local_only: bool = False) -> ApplyResult:
        """Restore every branch of an operation to its pre-operation state.

        Defaults to the most recent operation that is not undone. An operation
        that was already undone can be named explicitly to retry a partial undo.
        """
        if operation_id is None:
            receipt = self.latest_undoable()
            if receipt is None:
                raise NothingToUndoError()
        else:
            receipt = self._load_receipt(operation_id) or self._receipt_from_backups(operation_id)
            if receipt is None:
                raise OperationNotFoundError(operation_id)

        result = self._apply(receipt, use_pre=True, local_only=local_only)

        if result.status != ApplyStatus.FAILED:
            receipt.status = OperationStatus.UNDONE
            receipt.undone_at = self._timestamp()
            self._save_receipt(receipt)
        logger.debug("Undo of %s finished: %s", receipt.operation_id, result.status.value)
        return result

    def redo(self, operation_id: str | None = None, *, local_only: bool = False) -> ApplyResult:
        """Re-apply the post-operation state of the most recently undone operation."""
        chain = self.redo_chain()
        if not chain:
            raise NothingToRedoError()

        receipt = chain[0]
        if operation_id is not None and operation_id != receipt.operation_id:
            raise NothingToRedoError(
                f"Only the most recently undone operation ({receipt.operation_id}) can be redone"
            )

        result = self._apply(receipt, use_pre=False, local_only=local_only)

        if result.status != ApplyStatus.FAILED:
            receipt.status = OperationStatus.COMMITTED
            receipt.undone_at = None
            receipt.redone_at = self._timestamp()
            self._save_receipt(receipt)
        logger.debug("Redo of %s finished: %s", receipt.operation_id, result.status.value)
        return result

    def redo_chain(self) -> list[OperationReceipt]:
        """Undone operations that can still be redone, most recently undone first."""
        receipts = self.list_operations()
        latest_commit = max((r.committed_at for r in receipts if r.committed_at), default="")
        chain = [
            r
            for r in receipts
            if r.status == OperationStatus.UNDONE
            and r.committed_at is not None
            and r.undone_at is not None
            and r.undone_at > latest_commit
        ]
        chain.sort(key=lambda r: r.undone_at or "", reverse=True)
        return chain[:MAX_REDO_DEPTH]

    def _apply(self, receipt: OperationReceipt, *, use_pre: bool, local_only: bool) -> ApplyResult:
        worktrees = self._git.list_worktrees(self._repo_root)
        outcomes: list[BranchOutcome] = []

        for record in receipt.branches:
            target = record.pre if use_pre else record.post
            metadata = record.pre_metadata if use_pre else record.post_metadata

            try:
                self._move_branch(record.branch, target, worktrees)
                if record.metadata_captured:
                    self._store.restore(record.branch, metadata)
            except (RuntimeError, StackworkError) as e:
                logger.warning("Could not restore '%s': %s", record.branch, e)
                outcomes.append(
                    BranchOutcome(branch=record.branch, target=target, local_ok=False, error=str(e))
                )
                continue

            remote_ok: bool | None = None
            error: str | None = None
            if record.pushed and not local_only and target is not None:
                try:
                    self._git.push_branch(
                        self._repo_root, self._remote, target, record.branch, force=True
                    )
                    remote_ok = True
                except RuntimeError as e:
                    logger.warning("Could not force-push '%s': %s", record.branch, e)
                    remote_ok = False
                    error = str(e)

            outcomes.append(
                BranchOutcome(
                    branch=record.branch,
                    target=target,
                    local_ok=True,
                    remote_ok=remote_ok,
                    error=error,
                )
            )

        return ApplyResult(operation_id=receipt.operation_id, kind=receipt.kind, outcomes=outcomes)

    def _move_branch(self, branch: str, target: str | None, worktrees: list[WorktreeInfo]) -> None:
        current = self._git.get_branch_head(self._repo_root, branch)
        worktree = find_worktree_for_branch(worktrees, branch)

        if target is None:
            if current is None:
                return
            if worktree is not None:
                raise StackworkError(f"'{branch}' is checked out in {worktree}; cannot delete it")
            self._git.delete_branch(self._repo_root, branch, force=True)
            return

        if current == target:
            return

        if worktree is not None:
            if self._git.has_uncommitted_changes(worktree):
                raise DirtyWorktreeError(branch, worktree)
            self._git.reset_hard(worktree, target)
        else:
            self._git.update_ref(self._repo_root, f"refs/heads/{branch}", target)

    # ------------------------------------------------------------------
    # Listing and cleanup
    # ------------------------------------------------------------------

    def list_operations(self) -> list[OperationReceipt]:
        """All receipts, oldest first."""
        if not self._receipts_dir.exists():
            return []
        receipts: list[OperationReceipt] = []
        for path in sorted(self._receipts_dir.glob("*.json")):
            receipt = self._load_receipt(path.stem)
            if receipt is not None:
                receipts.append(receipt)
        return receipts

    def latest_undoable(self) -> OperationReceipt | None:
        """Newest operation not yet undone, including ones only recoverable from backups."""
        candidates: dict[str, OperationReceipt] = {
            r.operation_id: r for r in self.list_operations() if r.status != OperationStatus.UNDONE
        }
        for operation_id in self._backup_operation_ids():
            if operation_id in candidates or self._receipt_path(operation_id).exists():
                continue
            orphan = self._receipt_from_backups(operation_id)
            if orphan is not None:
                candidates[operation_id] = orphan
        if not candidates:
            return None
        return candidates[max(candidates)]

    def prune(self, keep: int) -> list[str]:
        """Delete backup refs and receipts of all but the `keep` newest operations."""
        operation_ids = sorted(
            {r.operation_id for r in self.list_operations()} | self._backup_operation_ids()
        )
        doomed = operation_ids[: max(len(operation_ids) - keep, 0)]
        for operation_id in doomed:
            prefix = f"{BACKUP_REF_PREFIX}{operation_id}/"
            for ref in self._git.list_refs(self._repo_root, prefix):
                self._git.delete_ref(self._repo_root, ref)
            path = self._receipt_path(operation_id)
            if path.exists():
                path.unlink()
        return doomed

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _receipt_from_backups(self, operation_id: str) -> OperationReceipt | None:
        prefix = f"{BACKUP_REF_PREFIX}{operation_id}/"
        refs = self._git.list_refs(self._repo_root, prefix)
        if not refs:
            return None
        records = [
            BranchRecord(branch=ref.removeprefix(prefix), pre=sha, metadata_captured=False)
            for ref, sha in sorted(refs.items())
        ]
        return OperationReceipt(
            operation_id=operation_id,
            kind="unknown",
            status=OperationStatus.IN_PROGRESS,
            started_at="",
            branches=records,
        )

    def _backup_operation_ids(self) -> set[str]:
        refs = self._git.list_refs(self._repo_root, BACKUP_REF_PREFIX)
        return {ref.removeprefix(BACKUP_REF_PREFIX).split("/", 1)[0] for ref in refs}

    def _read_metadata(self, branch: str) -> StackEntry | None:
        try:
            return self._store.read(branch)
        except (RuntimeError, ValueError) as e:
            logger.warning("Unreadable metadata for '%s' treated as absent: %s", branch, e)
            return None

    def _receipt_path(self, operation_id: str) -> Path:
        return self._receipts_dir / f"{operation_id}.json"

    def _load_receipt(self, operation_id: str) -> OperationReceipt | None:
        path = self._receipt_path(operation_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return OperationReceipt.from_dict(json.load(f))

    def _save_receipt(self, receipt: OperationReceipt) -> None:
        self._receipts_dir.mkdir(parents=True, exist_ok=True)
        path = self._receipt_path(receipt.operation_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(receipt.to_dict(), f, indent=2)
        tmp_path.replace(path)

    def _new_operation_id(self) -> str:
        now = self._time.now()
        return f"{now:%Y%m%dT%H%M%S%f}-{secrets.token_hex(2)}"

    def _timestamp(self) -> str:
        return self._time.now().isoformat()


def _entry_to_dict(entry: StackEntry | None) -> dict[str, str] | None:
    if entry is None:
        return None
    return {"parent": entry.parent, "parent_revision": entry.parent_revision}


def _entry_from_dict(branch: str, data: dict[str, str] | None) -> StackEntry | None:
    if data is None:
        return None
    return StackEntry(branch=branch, parent=data["parent"], parent_revision=data["parent_revision"])
