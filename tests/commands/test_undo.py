"""Tests for the undo and redo commands."""

from pathlib import Path

from click.testing import CliRunner

from stackwork.cli.cli import cli
from tests.test_utils.stack_env import build_stack_env


def test_undo_restores_restack_and_redo_reapplies_it(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()
    runner.invoke(cli, ["restack", "a"], obj=env.build_context())
    restacked = {name: env.tip(name) for name in ("a", "b", "c")}

    undo = runner.invoke(cli, ["undo"], obj=env.build_context())

    assert undo.exit_code == 0, undo.output
    assert "✓ Undid" in undo.output
    assert {name: env.tip(name) for name in ("a", "b", "c")} == {"a": "a1", "b": "b1", "c": "c1"}
    entry = env.store.read("a")
    assert entry is not None
    assert entry.parent_revision == "m0"

    redo = runner.invoke(cli, ["redo"], obj=env.build_context())

    assert redo.exit_code == 0, redo.output
    assert {name: env.tip(name) for name in ("a", "b", "c")} == restacked


def test_undo_with_nothing_recorded_fails(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["undo"], obj=env.build_context())

    assert result.exit_code == 1
    assert "Nothing to undo" in result.output


def test_undo_unknown_operation_fails(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["undo", "nope"], obj=env.build_context())

    assert result.exit_code == 1
    assert "Operation 'nope' not found" in result.output


def test_partial_undo_exits_nonzero(tmp_path: Path) -> None:
    """The checked-out branch cannot be reset while its worktree is dirty."""
    repo_root = tmp_path / "repo"
    env = build_stack_env(tmp_path, current_branch="b", dirty={repo_root})
    runner = CliRunner()
    runner.invoke(cli, ["restack", "a", "--auto-stash"], obj=env.build_context())
    restacked_b = env.tip("b")

    result = runner.invoke(cli, ["undo"], obj=env.build_context())

    assert result.exit_code == 1
    assert "only partially applied" in result.output
    assert env.tip("a") == "a1"
    assert env.tip("b") == restacked_b


def test_undo_is_blocked_while_restack_paused(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path, conflicts={"b": ["x"]})
    runner = CliRunner()
    runner.invoke(cli, ["restack", "a"], obj=env.build_context())

    result = runner.invoke(cli, ["undo"], obj=env.build_context())

    assert result.exit_code == 1
    assert "A restack is paused" in result.output


def test_redo_without_undo_fails(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["redo"], obj=env.build_context())

    assert result.exit_code == 1
    assert "Nothing to redo" in result.output
