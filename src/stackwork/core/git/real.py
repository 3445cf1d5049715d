"""Production Git implementation using subprocess.

This module provides the real Git implementation that executes actual git
commands via subprocess.
"""

import os
import subprocess
from pathlib import Path

from stackwork.core.git.abc import Git, RebaseResult, WorktreeInfo
from stackwork.core.subprocess import run_subprocess_with_context

# Non-interactive editor so rebase --continue never blocks on a commit message
_NON_INTERACTIVE_ENV = {"GIT_EDITOR": "true"}

# ============================================================================
# Production Implementation
# ============================================================================


class RealGit(Git):
    """Production implementation using subprocess.

    All git operations execute actual git commands via subprocess.
    """

    def list_worktrees(self, repo_root: Path) -> list[WorktreeInfo]:
        """List all worktrees in the repository."""
        result = run_subprocess_with_context(
            ["git", "worktree", "list", "--porcelain"],
            operation_context="list worktrees",
            cwd=repo_root,
        )

        worktrees: list[WorktreeInfo] = []
        current_path: Path | None = None
        current_branch: str | None = None

        for line in result.stdout.splitlines():
            line = line.strip()
            if line.startswith("worktree "):
                current_path = Path(line.split(maxsplit=1)[1])
                current_branch = None
            elif line.startswith("branch "):
                if current_path is None:
                    continue
                branch_ref = line.split(maxsplit=1)[1]
                current_branch = branch_ref.replace("refs/heads/", "", 1)
            elif line == "" and current_path is not None:
                worktrees.append(WorktreeInfo(path=current_path, branch=current_branch))
                current_path = None
                current_branch = None

        if current_path is not None:
            worktrees.append(WorktreeInfo(path=current_path, branch=current_branch))

        # Mark first worktree as root (git guarantees this ordering)
        if worktrees:
            first = worktrees[0]
            worktrees[0] = WorktreeInfo(path=first.path, branch=first.branch, is_root=True)

        return worktrees

    def get_current_branch(self, cwd: Path) -> str | None:
        """Get the currently checked-out branch."""
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return None

        branch = result.stdout.strip()
        if branch == "HEAD":
            return None

        return branch

    def get_head_commit(self, cwd: Path) -> str | None:
        """Get the commit HEAD points at in the given worktree."""
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "--quiet", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return None

        return result.stdout.strip()

    def get_trunk_branch(self, repo_root: Path) -> str:
        """Get the trunk branch name for the repository."""
        # 1. Try git symbolic-ref to detect default branch
        result = subprocess.run(
            ["git", "symbolic-ref", "refs/remotes/origin/HEAD"],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode == 0:
            # Parse "refs/remotes/origin/master" -> "master"
            ref = result.stdout.strip()
            if ref.startswith("refs/remotes/origin/"):
                return ref.replace("refs/remotes/origin/", "")

        # 2. Fallback: try 'main' then 'master', use first that exists
        for candidate in ["main", "master"]:
            result = subprocess.run(
                ["git", "show-ref", "--verify", f"refs/heads/{candidate}"],
                cwd=repo_root,
                capture_output=True,
                check=False,
            )
            if result.returncode == 0:
                return candidate

        # 3. Final fallback: 'main'
        return "main"

    def get_git_common_dir(self, cwd: Path) -> Path | None:
        """Get the common git directory."""
        result = subprocess.run(
            ["git", "rev-parse", "--git-common-dir"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return None

        git_dir = Path(result.stdout.strip())
        if not git_dir.is_absolute():
            git_dir = cwd / git_dir

        return git_dir.resolve()

    def has_uncommitted_changes(self, cwd: Path) -> bool:
        """Check if a worktree has uncommitted changes."""
        result = run_subprocess_with_context(
            ["git", "status", "--porcelain"],
            operation_context=f"check for uncommitted changes in {cwd}",
            cwd=cwd,
        )
        return bool(result.stdout.strip())

    def get_branch_heads(self, repo_root: Path) -> dict[str, str]:
        """Map every local branch name to its commit SHA."""
        result = run_subprocess_with_context(
            ["git", "for-each-ref", "--format=%(refname) %(objectname)", "refs/heads/"],
            operation_context="list local branch heads",
            cwd=repo_root,
        )
        heads: dict[str, str] = {}
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            refname, sha = line.rsplit(" ", 1)
            heads[refname.removeprefix("refs/heads/")] = sha
        return heads

    def get_branch_head(self, repo_root: Path, branch: str) -> str | None:
        """Get the commit SHA at the head of a branch."""
        return self.resolve_commit(repo_root, f"refs/heads/{branch}")

    def resolve_commit(self, repo_root: Path, rev: str) -> str | None:
        """Resolve any revision to a commit SHA."""
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return None

        return result.stdout.strip()

    def get_merge_base(self, repo_root: Path, left: str, right: str) -> str | None:
        """Get the best common ancestor of two revisions."""
        result = subprocess.run(
            ["git", "merge-base", left, right],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return None

        return result.stdout.strip()

    def is_ancestor(self, repo_root: Path, ancestor: str, descendant: str) -> bool:
        """Check whether `ancestor` is reachable from `descendant`."""
        result = subprocess.run(
            ["git", "merge-base", "--is-ancestor", ancestor, descendant],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode in (0, 1):
            return result.returncode == 0
        result.check_returncode()
        return False

    def count_commits(self, repo_root: Path, base: str, head: str) -> int:
        """Count commits reachable from `head` but not from `base`."""
        result = run_subprocess_with_context(
            ["git", "rev-list", "--count", f"{base}..{head}"],
            operation_context=f"count commits in {base}..{head}",
            cwd=repo_root,
        )
        return int(result.stdout.strip())

    def checkout_branch(self, cwd: Path, branch: str) -> None:
        """Checkout a branch in the given directory."""
        run_subprocess_with_context(
            ["git", "checkout", branch],
            operation_context=f"checkout branch '{branch}'",
            cwd=cwd,
        )

    def checkout_detached(self, cwd: Path, commit: str) -> None:
        """Detach HEAD at a commit in the given directory."""
        run_subprocess_with_context(
            ["git", "checkout", "--detach", commit],
            operation_context=f"detach HEAD at {commit}",
            cwd=cwd,
        )

    def create_branch(self, cwd: Path, branch_name: str, start_point: str) -> None:
        """Create a new branch without checking it out."""
        run_subprocess_with_context(
            ["git", "branch", branch_name, start_point],
            operation_context=f"create branch '{branch_name}' from '{start_point}'",
            cwd=cwd,
        )

    def delete_branch(self, cwd: Path, branch_name: str, *, force: bool) -> None:
        """Delete a local branch."""
        flag = "-D" if force else "-d"
        run_subprocess_with_context(
            ["git", "branch", flag, branch_name],
            operation_context=f"delete branch '{branch_name}'",
            cwd=cwd,
        )

    def reset_hard(self, cwd: Path, ref: str) -> None:
        """Reset the checked-out branch, index and working tree to `ref`."""
        run_subprocess_with_context(
            ["git", "reset", "--hard", ref],
            operation_context=f"reset worktree {cwd} to '{ref}'",
            cwd=cwd,
        )

    def update_ref(self, repo_root: Path, ref: str, sha: str) -> None:
        """Point a fully qualified ref at an object SHA."""
        run_subprocess_with_context(
            ["git", "update-ref", ref, sha],
            operation_context=f"update ref '{ref}' to {sha[:12]}",
            cwd=repo_root,
        )

    def delete_ref(self, repo_root: Path, ref: str) -> None:
        """Delete a fully qualified ref."""
        run_subprocess_with_context(
            ["git", "update-ref", "-d", ref],
            operation_context=f"delete ref '{ref}'",
            cwd=repo_root,
        )

    def list_refs(self, repo_root: Path, prefix: str) -> dict[str, str]:
        """Map every ref under `prefix` to the object SHA it points at."""
        result = run_subprocess_with_context(
            ["git", "for-each-ref", "--format=%(refname) %(objectname)", prefix],
            operation_context=f"list refs under '{prefix}'",
            cwd=repo_root,
        )
        refs: dict[str, str] = {}
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            refname, sha = line.rsplit(" ", 1)
            refs[refname] = sha
        return refs

    def read_ref_blob(self, repo_root: Path, ref: str) -> str | None:
        """Read the content of the blob a ref points at."""
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "--quiet", ref],
            cwd=repo_root,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return None

        sha = result.stdout.strip()
        blob = run_subprocess_with_context(
            ["git", "cat-file", "blob", sha],
            operation_context=f"read blob for ref '{ref}'",
            cwd=repo_root,
        )
        return blob.stdout

    def write_ref_blob(self, repo_root: Path, ref: str, content: str) -> None:
        """Store `content` as a blob and point `ref` at it."""
        result = run_subprocess_with_context(
            ["git", "hash-object", "-w", "--stdin"],
            operation_context=f"write blob for ref '{ref}'",
            cwd=repo_root,
            input=content,
        )
        self.update_ref(repo_root, ref, result.stdout.strip())

    def rebase_onto(self, cwd: Path, branch: str, *, onto: str, upstream: str) -> RebaseResult:
        """Replay commits of `branch` not reachable from `upstream` onto `onto`."""
        cmd = ["git", "rebase", "--onto", onto, upstream, branch]
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            env={**os.environ, **_NON_INTERACTIVE_ENV},
        )
        return self._rebase_result(cwd, result, f"rebase '{branch}' onto {onto[:12]}")

    def continue_rebase(self, cwd: Path) -> RebaseResult:
        """Continue an in-progress rebase after conflicts were resolved."""
        result = subprocess.run(
            ["git", "rebase", "--continue"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            env={**os.environ, **_NON_INTERACTIVE_ENV},
        )
        return self._rebase_result(cwd, result, "continue rebase")

    def abort_rebase(self, cwd: Path) -> None:
        """Abort an in-progress rebase."""
        run_subprocess_with_context(
            ["git", "rebase", "--abort"],
            operation_context=f"abort rebase in {cwd}",
            cwd=cwd,
        )

    def is_rebase_in_progress(self, cwd: Path) -> bool:
        """Check whether a rebase is stopped in the given worktree."""
        for state_dir in ("rebase-merge", "rebase-apply"):
            result = subprocess.run(
                ["git", "rev-parse", "--git-path", state_dir],
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False,
            )
            if result.returncode != 0:
                continue
            path = Path(result.stdout.strip())
            if not path.is_absolute():
                path = cwd / path
            if path.exists():
                return True
        return False

    def _rebase_result(
        self, cwd: Path, result: subprocess.CompletedProcess[str], operation: str
    ) -> RebaseResult:
        if result.returncode == 0:
            return RebaseResult(success=True, has_conflicts=False)

        if self.is_rebase_in_progress(cwd):
            conflicted = run_subprocess_with_context(
                ["git", "diff", "--name-only", "--diff-filter=U"],
                operation_context="list conflicted files",
                cwd=cwd,
            )
            files = [line for line in conflicted.stdout.splitlines() if line.strip()]
            return RebaseResult(success=False, has_conflicts=True, conflicted_files=files)

        raise RuntimeError(
            f"Failed to {operation}\n"
            f"Exit code: {result.returncode}\n"
            f"stderr: {result.stderr.strip()}"
        )

    def stash_push(self, cwd: Path, message: str) -> str | None:
        """Stash all local changes, including untracked files."""
        result = run_subprocess_with_context(
            ["git", "stash", "push", "--include-untracked", "-m", message],
            operation_context=f"stash changes in {cwd}",
            cwd=cwd,
        )
        if "No local changes to save" in result.stdout:
            return None

        # refs/stash is shared, so read the new entry back right away
        head = run_subprocess_with_context(
            ["git", "rev-parse", "refs/stash"],
            operation_context=f"resolve stash entry created in {cwd}",
            cwd=cwd,
        )
        return head.stdout.strip()

    def stash_apply(self, cwd: Path, stash: str) -> bool:
        """Re-apply the stash entry with the given commit id."""
        result = subprocess.run(
            ["git", "stash", "apply", stash],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0

    def stash_drop(self, cwd: Path, stash: str) -> None:
        """Drop the stash entry with the given commit id."""
        result = run_subprocess_with_context(
            ["git", "stash", "list", "--format=%gd %H"],
            operation_context="list stash entries",
            cwd=cwd,
        )
        for line in result.stdout.splitlines():
            selector, _, sha = line.partition(" ")
            if sha.strip() == stash:
                run_subprocess_with_context(
                    ["git", "stash", "drop", selector],
                    operation_context=f"drop stash entry {stash}",
                    cwd=cwd,
                )
                return
        raise RuntimeError(f"Failed to drop stash entry {stash}: not in the stash list")

    def get_diff(self, repo_root: Path, base: str, head: str, *, stat: bool) -> str:
        """Compute the diff (or diffstat) between two commits."""
        cmd = ["git", "diff"]
        if stat:
            cmd.append("--stat")
        cmd.extend([base, head])
        result = run_subprocess_with_context(
            cmd,
            operation_context=f"diff {base[:12]}..{head[:12]}",
            cwd=repo_root,
        )
        return result.stdout

    def push_branch(
        self, repo_root: Path, remote: str, source: str, branch: str, *, force: bool
    ) -> None:
        """Push `source` to `refs/heads/<branch>` on `remote`."""
        cmd = ["git", "push"]
        if force:
            cmd.append("--force")
        cmd.extend([remote, f"{source}:refs/heads/{branch}"])
        run_subprocess_with_context(
            cmd,
            operation_context=f"push branch '{branch}' to remote '{remote}'",
            cwd=repo_root,
        )

    def fetch_branch(self, repo_root: Path, remote: str, branch: str) -> None:
        """Fetch a specific branch from a remote."""
        run_subprocess_with_context(
            ["git", "fetch", remote, branch],
            operation_context=f"fetch branch '{branch}' from remote '{remote}'",
            cwd=repo_root,
        )

    def merge_ff_only(self, cwd: Path, ref: str) -> None:
        """Fast-forward the branch checked out in `cwd` to `ref`."""
        run_subprocess_with_context(
            ["git", "merge", "--ff-only", ref],
            operation_context=f"fast-forward to '{ref}'",
            cwd=cwd,
        )
