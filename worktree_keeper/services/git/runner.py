"""Git subprocess primitive for git-worktree-keeper."""

import re
from typing import Optional, Sequence

import git

from worktree_keeper.exceptions import ExecutionError
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

# GitPython decorates captured streams as "\n  stderr: '<text>'"
_STREAM_PREFIX = re.compile(r"^\s*(stdout|stderr):\s*'(.*)'\s*$", re.DOTALL)


def _clean_stream(text) -> str:
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    match = _STREAM_PREFIX.match(text)
    return (match.group(2) if match else text).strip()


class GitRunner:
    """Runs git commands and returns their stdout.

    Every other git-facing service is built on :meth:`run`; failures surface
    as :class:`ExecutionError` with git's own diagnostic text preserved.
    """

    def __init__(self, repo_path: str):
        """Initialize the runner.

        Args:
            repo_path: Default working directory for commands
        """
        self.repo_path = repo_path

    def run(self, args: Sequence[str], cwd: Optional[str] = None) -> str:
        """Run ``git <args>`` in ``cwd`` (default: the repository path).

        Returns:
            The command's stdout with the trailing newline removed

        Raises:
            ExecutionError: If git exits non-zero or cannot be started
        """
        workdir = cwd or self.repo_path
        command = ["git", *args]
        logger.debug(f"Running {' '.join(command)} (cwd={workdir})")
        try:
            return git.Git(workdir).execute(command)
        except git.exc.GitCommandError as e:
            stderr = _clean_stream(e.stderr if hasattr(e, "stderr") else str(e))
            stdout = _clean_stream(e.stdout if hasattr(e, "stdout") else "")
            status = e.status if hasattr(e, "status") else "unknown"

            detail = stderr or stdout
            if detail:
                error_msg = f"git {args[0]} failed (exit {status}): {detail}"
            else:
                error_msg = f"git {args[0]} failed with exit code {status}"

            logger.debug(error_msg)
            raise ExecutionError(f"git {args[0]}", error_msg, command=command, stderr=detail) from e
        except git.exc.CommandError as e:
            error_msg = f"could not run git in {workdir}: {e}"
            logger.debug(error_msg)
            raise ExecutionError(f"git {args[0]}", error_msg, command=command, stderr=str(e)) from e

    def succeeds(self, args: Sequence[str], cwd: Optional[str] = None) -> bool:
        """Run a git command and report whether it exited zero."""
        try:
            self.run(args, cwd=cwd)
            return True
        except ExecutionError:
            return False
