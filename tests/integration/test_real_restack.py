"""Restack, undo and conflict handling against a real git repository.

These tests shell out to git and exercise RealGit end to end through the CLI.
"""

import subprocess
from pathlib import Path

from click.testing import CliRunner

from stackwork.cli.cli import cli
from stackwork.core.config import GlobalConfig
from stackwork.core.context import StackContext
from stackwork.core.git.real import RealGit
from stackwork.core.metadata import GitRefMetadataStore
from stackwork.core.repo_discovery import RepoContext, discover_repo_or_sentinel
from stackwork.core.time import RealTime


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def _commit(repo: Path, filename: str, content: str, message: str) -> None:
    (repo / filename).write_text(content, encoding="utf-8")
    _git(repo, "add", filename)
    _git(repo, "commit", "-m", message)


def _is_ancestor(repo: Path, ancestor: str, descendant: str) -> bool:
    result = subprocess.run(
        ["git", "merge-base", "--is-ancestor", ancestor, descendant],
        cwd=repo,
        capture_output=True,
        check=False,
    )
    return result.returncode == 0


def _context(repo: Path) -> StackContext:
    git = RealGit()
    return StackContext(
        git=git,
        time=RealTime(),
        cwd=repo,
        global_config=GlobalConfig(),
        repo=discover_repo_or_sentinel(repo, git),
        trunk_branch=None,
    )


def _create_stack(tmp_path: Path, *, conflicting_trunk: bool = False) -> Path:
    """main <- a <- b <- c, then one more commit on main."""
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-b", "main")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test User")
    _git(repo, "config", "commit.gpgsign", "false")
    _commit(repo, "README.md", "# Test Repository\n", "Initial commit")

    for branch, parent in (("a", "main"), ("b", "a"), ("c", "b")):
        _git(repo, "checkout", "-b", branch, parent)
        _commit(repo, f"{branch}.txt", f"{branch}\n", f"Add {branch}")

    _git(repo, "checkout", "main")
    if conflicting_trunk:
        _commit(repo, "a.txt", "trunk version\n", "Trunk edits a.txt")
    else:
        _commit(repo, "main.txt", "more trunk\n", "Advance trunk")

    runner = CliRunner()
    for branch, parent in (("a", "main"), ("b", "a"), ("c", "b")):
        result = runner.invoke(
            cli, ["branch", "track", branch, "--parent", parent], obj=_context(repo)
        )
        assert result.exit_code == 0, result.output
    return repo


def test_restack_rebases_whole_upstack_and_undo_restores_it(tmp_path: Path) -> None:
    repo = _create_stack(tmp_path)
    before = {branch: _git(repo, "rev-parse", branch) for branch in ("a", "b", "c")}
    runner = CliRunner()

    result = runner.invoke(cli, ["restack", "a"], obj=_context(repo))

    assert result.exit_code == 0, result.output
    for branch, parent in (("a", "main"), ("b", "a"), ("c", "b")):
        assert _is_ancestor(repo, parent, branch)
    store = GitRefMetadataStore(RealGit(), repo)
    entry = store.read("b")
    assert entry is not None
    assert entry.parent_revision == _git(repo, "rev-parse", "a")
    assert _git(repo, "rev-list", "--count", "main..c") == "3"
    assert _git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"

    again = runner.invoke(cli, ["restack", "a"], obj=_context(repo))
    assert "Everything is up to date." in again.output

    undo = runner.invoke(cli, ["undo"], obj=_context(repo))
    assert undo.exit_code == 0, undo.output
    # The no-op restack is undone first
    undo = runner.invoke(cli, ["undo"], obj=_context(repo))
    assert undo.exit_code == 0, undo.output
    assert {branch: _git(repo, "rev-parse", branch) for branch in ("a", "b", "c")} == before


def test_conflict_then_continue(tmp_path: Path) -> None:
    repo = _create_stack(tmp_path, conflicting_trunk=True)
    runner = CliRunner()

    result = runner.invoke(cli, ["restack", "a"], obj=_context(repo))

    assert result.exit_code == 1
    assert "a.txt" in result.output
    ctx = _context(repo)
    assert isinstance(ctx.repo, RepoContext)
    assert ctx.repo.restack_state_path.exists()

    (repo / "a.txt").write_text("resolved\n", encoding="utf-8")
    _git(repo, "add", "a.txt")
    result = runner.invoke(cli, ["continue"], obj=_context(repo))

    assert result.exit_code == 0, result.output
    for branch, parent in (("a", "main"), ("b", "a"), ("c", "b")):
        assert _is_ancestor(repo, parent, branch)
    assert not ctx.repo.restack_state_path.exists()
    assert (repo / "a.txt").read_text(encoding="utf-8") == "trunk version\n"


def test_conflict_then_abort_keeps_stalled_branch(tmp_path: Path) -> None:
    repo = _create_stack(tmp_path, conflicting_trunk=True)
    a_before = _git(repo, "rev-parse", "a")
    runner = CliRunner()
    runner.invoke(cli, ["restack", "a"], obj=_context(repo))

    result = runner.invoke(cli, ["abort"], obj=_context(repo))

    assert result.exit_code == 0, result.output
    assert _git(repo, "rev-parse", "a") == a_before
    assert _git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
    assert _git(repo, "status", "--porcelain") == ""


def test_auto_stash_restores_each_worktree_its_own_changes(tmp_path: Path) -> None:
    """git keeps one stash list for all worktrees of a repository."""
    repo = _create_stack(tmp_path)
    wa = tmp_path / "wt-a"
    wb = tmp_path / "wt-b"
    _git(repo, "worktree", "add", str(wa), "a")
    _git(repo, "worktree", "add", str(wb), "b")
    (wa / "a.txt").write_text("dirty-in-a\n", encoding="utf-8")
    (wb / "b.txt").write_text("dirty-in-b\n", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["restack", "a", "--auto-stash"], obj=_context(repo))

    assert result.exit_code == 0, result.output
    for branch, parent in (("a", "main"), ("b", "a"), ("c", "b")):
        assert _is_ancestor(repo, parent, branch)
    assert (wa / "a.txt").read_text(encoding="utf-8") == "dirty-in-a\n"
    assert (wb / "b.txt").read_text(encoding="utf-8") == "dirty-in-b\n"
    assert _git(wa, "status", "--porcelain") == "M a.txt"
    assert _git(wb, "status", "--porcelain") == "M b.txt"
    assert _git(repo, "stash", "list") == ""


def test_restack_from_detached_head_detaches_again(tmp_path: Path) -> None:
    repo = _create_stack(tmp_path)
    _git(repo, "checkout", "--detach", "main")
    head = _git(repo, "rev-parse", "HEAD")
    runner = CliRunner()

    result = runner.invoke(cli, ["restack", "a"], obj=_context(repo))

    assert result.exit_code == 0, result.output
    assert _git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "HEAD"
    assert _git(repo, "rev-parse", "HEAD") == head
