"""Tests for the ops list and ops prune commands."""

from pathlib import Path

from click.testing import CliRunner

from stackwork.cli.cli import cli
from tests.test_utils.stack_env import build_stack_env


def test_ops_list_shows_operations_newest_first(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()
    runner.invoke(cli, ["branch", "create", "d", "--no-checkout"], obj=env.build_context())
    runner.invoke(cli, ["restack", "a"], obj=env.build_context())
    runner.invoke(cli, ["undo"], obj=env.build_context())

    result = runner.invoke(cli, ["ops", "list"], obj=env.build_context())

    assert result.exit_code == 0, result.output
    restack_id, create_id = [
        r.operation_id for r in reversed(env.transactions.list_operations())
    ]
    assert result.output.index(restack_id) < result.output.index(create_id)
    assert "undone" in result.output
    assert "branch-create" in result.output


def test_ops_list_empty(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["ops", "list"], obj=env.build_context())

    assert result.exit_code == 0
    assert "No operations recorded." in result.output


def test_ops_prune_removes_old_operations(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()
    for name in ("d", "e", "f"):
        runner.invoke(
            cli,
            ["branch", "create", name, "--parent", "main", "--no-checkout"],
            obj=env.build_context(),
        )

    result = runner.invoke(cli, ["ops", "prune", "--keep", "1"], obj=env.build_context())

    assert result.exit_code == 0, result.output
    assert "Pruned 2 operation(s)" in result.output
    assert len(env.transactions.list_operations()) == 1
    assert not any(ref.startswith("refs/stackwork-backup/") for ref in env.git.refs)


def test_ops_prune_with_nothing_to_do(tmp_path: Path) -> None:
    env = build_stack_env(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["ops", "prune"], obj=env.build_context())

    assert result.exit_code == 0
    assert "Nothing to prune." in result.output
