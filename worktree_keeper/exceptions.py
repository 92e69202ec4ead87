"""Custom exceptions for git-worktree-keeper"""

from typing import List, Optional, Sequence


class WorktreeKeeperError(Exception):
    """Base exception for all git-worktree-keeper errors."""
    pass


class ValidationError(WorktreeKeeperError):
    """A precondition failed before any mutating command was issued."""
    pass


class ProtectedBranchError(ValidationError):
    """Exception raised when attempting to delete a protected branch."""

    def __init__(self, branch: str, protected: Sequence[str] = ()):
        self.branch = branch
        self.protected = list(protected)
        message = f"Cannot delete protected branch '{branch}'"
        if self.protected:
            message += f" (protected branches: {', '.join(self.protected)})"
        super().__init__(message)


class UncommittedChangesError(ValidationError):
    """Exception raised when a worktree has pending changes."""

    def __init__(self, path: str, action: str = "continue"):
        self.path = path
        message = (
            f"Worktree at '{path}' has uncommitted changes. "
            f"Commit or stash them before you {action}, or use --force to {action} anyway."
        )
        super().__init__(message)


class NotFastForwardableError(ValidationError):
    """Exception raised when trunk has advanced past the branch's merge base."""

    def __init__(self, branch: str, trunk: str, merge_base: str = "", trunk_head: str = ""):
        self.branch = branch
        self.trunk = trunk
        self.merge_base = merge_base
        self.trunk_head = trunk_head
        message = (
            f"Cannot fast-forward '{trunk}' to '{branch}': '{trunk}' has moved since "
            f"'{branch}' diverged. Rebase '{branch}' onto '{trunk}' first."
        )
        if merge_base and trunk_head:
            message += f" (merge-base {merge_base[:7]}, {trunk} at {trunk_head[:7]})"
        super().__init__(message)


class PrimaryWorktreeError(ValidationError):
    """Exception raised when an operation targets the primary worktree."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Refusing to remove the primary worktree at '{path}'")


class PathExistsError(ValidationError):
    """Exception raised when a worktree target path already exists."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path '{path}' already exists. Use --force to replace it.")


class TrunkMissingError(ValidationError):
    """Exception raised when the trunk branch does not exist locally."""

    def __init__(self, trunk: str):
        self.trunk = trunk
        super().__init__(f"Trunk branch '{trunk}' does not exist locally")


class UnexpectedBranchError(ValidationError):
    """Exception raised when a worktree has an unexpected branch checked out."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected worktree at '{path}' to be on '{expected}', "
            f"but it has '{actual or '(detached HEAD)'}' checked out"
        )


class UnsafeCleanupError(ValidationError):
    """Exception raised when the cleanup safety gate finds blockers."""

    def __init__(self, identifier: str, blockers: Sequence[str]):
        self.identifier = identifier
        self.blockers = list(blockers)
        lines = [f"Cannot clean up '{identifier}':"]
        lines.extend(f"  - {blocker}" for blocker in self.blockers)
        lines.append("Commit or stash your changes, or use --force to clean up anyway.")
        super().__init__("\n".join(lines))


class NotFoundError(WorktreeKeeperError):
    """A worktree, branch or other resource could not be located."""
    pass


class WorktreeNotFoundError(NotFoundError):
    """Exception raised when no worktree matches a path or identifier."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"No worktree found for '{target}'")


class NoTrunkWorktreeError(NotFoundError):
    """Exception raised when no worktree has the trunk branch checked out."""

    def __init__(self, trunk: str):
        self.trunk = trunk
        super().__init__(
            f"No worktree has '{trunk}' checked out. "
            f"Check out '{trunk}' in the primary worktree and try again."
        )


class ExecutionError(WorktreeKeeperError):
    """An underlying git or provider command failed."""

    def __init__(
        self,
        operation: str,
        message: Optional[str] = None,
        command: Optional[Sequence[str]] = None,
        stderr: str = "",
    ):
        self.operation = operation
        self.message = message
        self.command = list(command) if command else []
        self.stderr = stderr

        error_msg = f"Operation '{operation}' failed"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class MergeFailedError(ExecutionError):
    """Exception raised when a fast-forward merge fails."""

    def __init__(self, branch: str, trunk: str, stderr: str = ""):
        self.branch = branch
        self.trunk = trunk
        message = (
            f"fast-forward merge of '{branch}' into '{trunk}' failed"
            + (f": {stderr}" if stderr else "")
            + f"\nRebase '{branch}' onto '{trunk}' and try again, "
            f"or check that '{trunk}' has no local changes."
        )
        super().__init__("merge", message, stderr=stderr)


class PortStillBoundError(ExecutionError):
    """Exception raised when a port is still bound after termination."""

    def __init__(self, port: int, pid: Optional[int] = None):
        self.port = port
        self.pid = pid
        message = f"port {port} is still in use after terminating"
        if pid is not None:
            message += f" process {pid}"
        super().__init__("terminate_dev_server", message)


class ConflictError(WorktreeKeeperError):
    """Exception raised when rebase conflicts survive automated resolution."""

    def __init__(self, conflicted_files: Sequence[str], reason: Optional[str] = None):
        self.conflicted_files: List[str] = list(conflicted_files)
        self.remediation = [
            f"git add {' '.join(self.conflicted_files)}" if self.conflicted_files else "git add <files>",
            "git rebase --continue",
            "git rebase --abort",
        ]

        lines = ["Rebase conflicts need manual resolution"]
        if reason:
            lines[0] += f" ({reason})"
        lines[0] += ":"
        lines.extend(f"  • {path}" for path in self.conflicted_files)
        lines.append("")
        lines.append("To resolve:")
        lines.append("  1. Fix the conflicts in the files above")
        lines.append(f"  2. Stage the resolved files: {self.remediation[0]}")
        lines.append(f"  3. Continue the rebase: {self.remediation[1]}")
        lines.append(f"Or abort the rebase: {self.remediation[2]}")
        super().__init__("\n".join(lines))
