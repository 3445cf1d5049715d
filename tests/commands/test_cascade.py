"""Tests for the cascade command."""

from pathlib import Path

from click.testing import CliRunner

from stackwork.cli.cli import cli
from stackwork.core.transaction import backup_ref
from tests.test_utils.stack_env import STALE_STACK_COMMITS, build_stack_env


def test_cascade_restacks_and_force_pushes_stack(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, current_branch="b")
    runner = CliRunner()

    result = runner.invoke(cli, ["cascade"], obj=env.build_context())

    assert result.exit_code == 0, result.output
    assert [(branch, force) for _, branch, _, force in env.git.pushed] == [
        ("a", True),
        ("b", True),
        ("c", True),
    ]
    assert env.git.remote_branches["c"] == env.tip("c")
    receipt = env.transactions.list_operations()[-1]
    assert receipt.kind == "cascade"
    assert all(record.pushed for record in receipt.branches)
    assert "Pushed 3 branch(es) to origin" in result.output


def test_undo_of_cascade_restores_remote(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, current_branch="b")
    runner = CliRunner()
    runner.invoke(cli, ["cascade"], obj=env.build_context())

    result = runner.invoke(cli, ["undo"], obj=env.build_context())

    assert result.exit_code == 0, result.output
    assert env.git.remote_branches == {"a": "a1", "b": "b1", "c": "c1"}
    assert "(remote updated)" in result.output


def test_cascade_no_push(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, current_branch="b")
    runner = CliRunner()

    result = runner.invoke(cli, ["cascade", "--no-push"], obj=env.build_context())

    assert result.exit_code == 0, result.output
    assert env.git.pushed == []
    assert len(env.git.rebase_calls) == 3


def test_rejected_push_stops_and_records_what_was_pushed(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, current_branch="b", push_failures={"b"})
    runner = CliRunner()

    result = runner.invoke(cli, ["cascade"], obj=env.build_context())

    assert result.exit_code == 1
    assert "Failed to push 'b'" in result.output
    records = {r.branch: r for r in env.transactions.list_operations()[-1].branches}
    assert records["a"].pushed
    assert not records["b"].pushed
    assert not records["c"].pushed


def test_cascade_warns_when_trunk_is_behind_remote(tmp_path: Path) -> None:
    env = build_stack_env(
        tmp_path,
        commits={**STALE_STACK_COMMITS, "m2": "m1"},
        refs={"refs/remotes/origin/main": "m2"},
    )
    runner = CliRunner()

    result = runner.invoke(cli, ["cascade", "a", "--no-push"], obj=env.build_context())

    assert result.exit_code == 0, result.output
    assert "1 commit(s) behind origin/main" in result.output


def test_cascade_conflict_pushes_nothing(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, conflicts={"b": ["f"]})
    runner = CliRunner()

    result = runner.invoke(cli, ["cascade", "a"], obj=env.build_context())

    assert result.exit_code == 1
    assert env.git.pushed == []
    receipt = env.transactions.list_operations()[-1]
    assert backup_ref(receipt.operation_id, "a") in env.git.refs
