"""Tests for operation receipts, backup refs and undo/redo."""

from pathlib import Path

import pytest

from stackwork.core.errors import NothingToRedoError, NothingToUndoError, OperationNotFoundError
from stackwork.core.git.abc import WorktreeInfo
from stackwork.core.transaction import (
    MAX_REDO_DEPTH,
    ApplyStatus,
    OperationStatus,
    backup_ref,
)
from tests.test_utils.stack_env import StackEnv, build_stack_env


def _move(env: StackEnv, branch: str, sha: str) -> None:
    env.git.update_ref(env.repo_root, f"refs/heads/{branch}", sha)


def _record_move(env: StackEnv, branch: str, sha: str, *, pushed: bool = False) -> str:
    """Run one committed operation that moves `branch` to `sha`."""
    handle = env.transactions.begin("restack", [branch])
    _move(env, branch, sha)
    env.store.write(branch, "main", sha)
    env.transactions.commit(handle, pushed=[branch] if pushed else [])
    return handle.operation_id


def _receipt(env: StackEnv, operation_id: str):
    return next(r for r in env.transactions.list_operations() if r.operation_id == operation_id)


def test_begin_writes_backup_refs_and_in_progress_receipt(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)

    handle = env.transactions.begin("restack", ["a", "b", "a", "new"])

    assert handle.branches == ("a", "b", "new")
    assert env.git.refs[backup_ref(handle.operation_id, "a")] == "a1"
    assert env.git.refs[backup_ref(handle.operation_id, "b")] == "b1"
    assert backup_ref(handle.operation_id, "new") not in env.git.refs

    receipt = _receipt(env, handle.operation_id)
    assert receipt.status == OperationStatus.IN_PROGRESS
    records = {r.branch: r for r in receipt.branches}
    assert records["new"].pre is None
    assert records["a"].pre_metadata is not None
    assert records["a"].pre_metadata.parent_revision == "m0"


def test_commit_is_idempotent(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    handle = env.transactions.begin("restack", ["a"])
    _move(env, "a", "m1")

    first = env.transactions.commit(handle)
    second = env.transactions.commit(handle)

    assert first.status == OperationStatus.COMMITTED
    assert second.committed_at == first.committed_at
    assert second.branches[0].post == "m1"


def test_undo_then_redo_round_trips_refs_and_metadata(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    operation_id = _record_move(env, "a", "m1")

    undo = env.transactions.undo()

    assert undo.status == ApplyStatus.COMPLETE
    assert undo.operation_id == operation_id
    assert env.tip("a") == "a1"
    entry = env.store.read("a")
    assert entry is not None
    assert entry.parent_revision == "m0"
    assert _receipt(env, operation_id).status == OperationStatus.UNDONE

    redo = env.transactions.redo()

    assert redo.status == ApplyStatus.COMPLETE
    assert env.tip("a") == "m1"
    entry = env.store.read("a")
    assert entry is not None
    assert entry.parent_revision == "m1"
    assert _receipt(env, operation_id).status == OperationStatus.COMMITTED


def test_undo_deletes_branch_created_by_operation(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    handle = env.transactions.begin("branch-create", ["new"])
    env.git.create_branch(env.repo_root, "new", "m1")
    env.store.write("new", "main", "m1")
    env.transactions.commit(handle)

    result = env.transactions.undo()

    assert result.status == ApplyStatus.COMPLETE
    assert env.git.get_branch_head(env.repo_root, "new") is None
    assert env.store.read("new") is None


def test_undo_recreates_deleted_branch(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    handle = env.transactions.begin("branch-delete", ["b"])
    env.git.delete_branch(env.repo_root, "b", force=True)
    env.store.delete("b")
    env.transactions.commit(handle)

    env.transactions.undo()

    assert env.tip("b") == "b1"
    entry = env.store.read("b")
    assert entry is not None
    assert (entry.parent, entry.parent_revision) == ("a", "a1")


def test_checked_out_branch_is_reset_in_its_worktree(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, current_branch="a")
    _record_move(env, "a", "m1")

    env.transactions.undo()

    assert env.git.reset_calls == [(env.repo_root, "a1")]
    assert env.tip("a") == "a1"


def test_dirty_checked_out_branch_makes_undo_partial(tmp_path: Path) -> None:
    repo_root = tmp_path / "repo"
    env = build_stack_env(
        tmp_path,
        worktrees=[WorktreeInfo(path=repo_root, branch="a", is_root=True)],
        dirty={repo_root},
    )
    handle = env.transactions.begin("restack", ["a", "b"])
    _move(env, "a", "m1")
    _move(env, "b", "m1")
    env.transactions.commit(handle)

    result = env.transactions.undo()

    assert result.status == ApplyStatus.PARTIAL
    outcomes = {o.branch: o for o in result.outcomes}
    assert not outcomes["a"].local_ok
    assert outcomes["a"].error is not None
    assert outcomes["b"].ok
    assert env.tip("a") == "m1"
    assert env.tip("b") == "b1"


def test_undo_force_pushes_branches_that_were_pushed(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    _record_move(env, "a", "m1", pushed=True)

    result = env.transactions.undo()

    assert result.status == ApplyStatus.COMPLETE
    assert env.git.pushed == [("origin", "a", "a1", True)]
    assert result.outcomes[0].remote_ok is True


def test_local_only_undo_skips_remote(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    _record_move(env, "a", "m1", pushed=True)

    result = env.transactions.undo(local_only=True)

    assert env.git.pushed == []
    assert result.outcomes[0].remote_ok is None
    assert env.tip("a") == "a1"


def test_rejected_push_is_reported_per_branch(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, push_failures={"a"})
    handle = env.transactions.begin("cascade", ["a", "b"])
    _move(env, "a", "m1")
    _move(env, "b", "m1")
    env.transactions.commit(handle, pushed=["a", "b"])

    result = env.transactions.undo()

    assert result.status == ApplyStatus.PARTIAL
    outcomes = {o.branch: o for o in result.outcomes}
    assert outcomes["a"].local_ok
    assert outcomes["a"].remote_ok is False
    assert outcomes["b"].remote_ok is True


def test_undo_without_receipt_uses_backup_refs(tmp_path: Path) -> None:
    """An interrupted run may leave only backup refs behind."""
    env = build_stack_env(tmp_path)
    handle = env.transactions.begin("restack", ["a", "b"])
    _move(env, "a", "m1")
    receipt_path = env.repo.state_dir / "operations" / f"{handle.operation_id}.json"
    receipt_path.unlink()

    result = env.transactions.undo()

    assert result.operation_id == handle.operation_id
    assert result.kind == "unknown"
    assert result.status == ApplyStatus.COMPLETE
    assert env.tip("a") == "a1"
    # metadata is left as it was
    entry = env.store.read("a")
    assert entry is not None
    assert entry.parent_revision == "m0"


def test_undo_of_interrupted_operation_uses_in_progress_receipt(tmp_path: Path) -> None:
    """The process died after mutating branches but before commit()."""
    env = build_stack_env(tmp_path)
    handle = env.transactions.begin("restack", ["a", "new"])
    _move(env, "a", "m1")
    env.store.write("a", "main", "m1")
    env.git.create_branch(env.repo_root, "new", "m1")
    env.store.write("new", "a", "m1")
    assert _receipt(env, handle.operation_id).status == OperationStatus.IN_PROGRESS

    result = env.transactions.undo()

    assert result.operation_id == handle.operation_id
    assert result.kind == "restack"
    assert result.status == ApplyStatus.COMPLETE
    assert env.tip("a") == "a1"
    entry = env.store.read("a")
    assert entry is not None
    assert (entry.parent, entry.parent_revision) == ("main", "m0")
    assert env.git.get_branch_head(env.repo_root, "new") is None
    assert env.store.read("new") is None
    assert _receipt(env, handle.operation_id).status == OperationStatus.UNDONE


def test_nothing_to_undo(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)

    with pytest.raises(NothingToUndoError):
        env.transactions.undo()
    with pytest.raises(OperationNotFoundError):
        env.transactions.undo("20250101T000000000000-dead")


def test_new_operation_after_undo_invalidates_redo(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    _record_move(env, "a", "m1")
    env.transactions.undo()

    _record_move(env, "b", "m1")

    with pytest.raises(NothingToRedoError):
        env.transactions.redo()


def test_redo_replays_undone_operations_most_recent_first(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    first = _record_move(env, "a", "m1")
    second = _record_move(env, "b", "m1")
    assert env.transactions.undo().operation_id == second
    assert env.transactions.undo().operation_id == first

    with pytest.raises(NothingToRedoError):
        env.transactions.redo(second)

    assert env.transactions.redo().operation_id == first
    assert env.transactions.redo().operation_id == second
    assert env.tip("a") == "m1"
    assert env.tip("b") == "m1"
    with pytest.raises(NothingToRedoError):
        env.transactions.redo()


def test_redo_chain_is_bounded(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    for _ in range(MAX_REDO_DEPTH + 1):
        _record_move(env, "a", "m1")
    for _ in range(MAX_REDO_DEPTH + 1):
        env.transactions.undo()

    assert len(env.transactions.redo_chain()) == MAX_REDO_DEPTH


def test_prune_keeps_newest_operations(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    ids = [_record_move(env, "a", sha) for sha in ("m1", "m0", "m1")]

    removed = env.transactions.prune(keep=1)

    assert removed == ids[:2]
    assert [r.operation_id for r in env.transactions.list_operations()] == ids[2:]
    assert all(not ref.startswith(f"refs/stackwork-backup/{ids[0]}/") for ref in env.git.refs)
    assert backup_ref(ids[2], "a") in env.git.refs
