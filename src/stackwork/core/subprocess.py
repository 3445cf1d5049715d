"""Run git commands whose failure must stop the current operation.

Read-only queries that treat a non-zero exit as an answer ("no such ref") call
subprocess.run(check=False) directly instead.
"""

import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

logger = logging.getLogger(__name__)


def _format_command(cmd: Sequence[str]) -> str:
    return " ".join(str(arg) for arg in cmd)


def run_subprocess_with_context(
    cmd: Sequence[str],
    operation_context: str,
    cwd: Path | None = None,
    input: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run `cmd` and turn a failure into a RuntimeError that names what was attempted.

    Args:
        cmd: Command and arguments, usually starting with "git"
        operation_context: What the command does, phrased to follow "Failed to"
        cwd: Worktree or repository to run in
        input: Text fed to the command's stdin

    Raises:
        RuntimeError: On a non-zero exit, carrying the command, exit code and
            git's own output, or when the executable is missing
    """
    logger.debug("Running %s (cwd=%s)", _format_command(cmd), cwd)
    try:
        return subprocess.run(
            cmd,
            cwd=cwd,
            input=input,
            capture_output=True,
            text=True,
            encoding="utf-8",
            check=True,
        )
    except subprocess.CalledProcessError as e:
        lines = [
            f"Failed to {operation_context}",
            f"Command: {_format_command(cmd)}",
            f"Exit code: {e.returncode}",
        ]
        for label, output in (("stdout", e.stdout), ("stderr", e.stderr)):
            if output and output.strip():
                lines.append(f"{label}: {output.strip()}")
        raise RuntimeError("\n".join(lines)) from e
    except FileNotFoundError as e:
        raise RuntimeError(
            f"Cannot {operation_context}: '{cmd[0]}' was not found on PATH"
        ) from e
