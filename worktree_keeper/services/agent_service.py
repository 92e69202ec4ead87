"""Conflict resolution agents"""
import shutil
import subprocess
from abc import ABC, abstractmethod

from worktree_keeper.exceptions import ExecutionError
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

CONFLICT_RESOLUTION_PROMPT = (
    "Please help resolve the git rebase conflicts in this repository. "
    "Analyze the conflicted files, understand the changes from both branches, "
    "fix the conflicts, then run 'git add .' to stage the resolved files, "
    "and finally run 'git rebase --continue' to continue the rebase process. "
    "If the conflicts cannot be resolved safely, run 'git rebase --abort' instead. "
    "Handle the entire workflow for me."
)


class ConflictResolutionAgent(ABC):
    """Something that can be asked, once, to resolve rebase conflicts."""

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def invoke(self, prompt: str, working_directory: str, interactive: bool = False) -> None:
        """Run the agent to completion.

        Raises:
            ExecutionError: If the agent fails or times out
        """
        ...


class ClaudeAgent(ConflictResolutionAgent):
    """Runs the ``claude`` CLI headless in the worktree."""

    def __init__(self, executable: str = "claude", timeout: int = 1200):
        """Initialize the agent.

        Args:
            executable: Name or path of the Claude CLI
            timeout: Seconds before the single attempt is abandoned
        """
        self.executable = executable
        self.timeout = timeout

    def is_available(self) -> bool:
        available = shutil.which(self.executable) is not None
        if not available:
            logger.debug(f"{self.executable} CLI not found on PATH")
        return available

    def invoke(self, prompt: str, working_directory: str, interactive: bool = False) -> None:
        if interactive:
            command = [self.executable, "--add-dir", working_directory, "--", prompt]
            stdin_input = None
        else:
            command = [self.executable, "-p", "--add-dir", working_directory]
            stdin_input = prompt

        logger.debug(f"Launching {' '.join(command[:4])} in {working_directory}")
        try:
            subprocess.run(
                command,
                input=stdin_input,
                cwd=working_directory,
                capture_output=not interactive,
                text=True,
                timeout=self.timeout,
                check=True,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(
                "conflict_resolution", f"{self.executable} timed out after {self.timeout}s", command=command
            ) from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise ExecutionError(
                "conflict_resolution",
                f"{self.executable} exited with code {e.returncode}" + (f": {stderr}" if stderr else ""),
                command=command,
                stderr=stderr,
            ) from e
        except OSError as e:
            raise ExecutionError("conflict_resolution", str(e), command=command) from e
