"""Shared safety checks for integration and cleanup"""
import os
from typing import List

from worktree_keeper.config import Settings
from worktree_keeper.exceptions import (
    ExecutionError,
    PrimaryWorktreeError,
    ProtectedBranchError,
    UncommittedChangesError,
)
from worktree_keeper.models.cleanup import SafetyCheck
from worktree_keeper.models.worktree import Worktree
from worktree_keeper.services.git.worktrees import WorktreeRegistry, same_path
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


class SafetyValidator:
    """Preconditions checked before anything destructive runs."""

    def __init__(self, registry: WorktreeRegistry, settings: Settings):
        self.registry = registry
        self.settings = settings

    @property
    def protected_branches(self) -> List[str]:
        """Configured protected branches; trunk is always included."""
        protected = list(self.settings.protected_branches)
        if self.settings.main_branch not in protected:
            protected.append(self.settings.main_branch)
        return protected

    def is_protected(self, branch: str) -> bool:
        return branch in self.protected_branches

    def ensure_not_protected(self, branch: str) -> None:
        if self.is_protected(branch):
            raise ProtectedBranchError(branch, self.protected_branches)

    def is_primary(self, worktree: Worktree) -> bool:
        if worktree.is_primary:
            return True
        primary = self.registry.primary()
        return primary is not None and same_path(primary.path, worktree.path)

    def ensure_not_primary(self, worktree: Worktree) -> None:
        if self.is_primary(worktree):
            raise PrimaryWorktreeError(worktree.path)

    def has_uncommitted_changes(self, path: str) -> bool:
        return self.registry.has_uncommitted_changes(path)

    def ensure_clean(self, path: str, action: str = "continue") -> None:
        if self.has_uncommitted_changes(path):
            raise UncommittedChangesError(path, action=action)

    def check_cleanup_safety(self, worktree: Worktree) -> SafetyCheck:
        """Collect reasons not to remove ``worktree``.

        A missing directory is only a warning: the registration is stale and
        removing it is exactly what cleanup is for.
        """
        check = SafetyCheck()

        if self.is_primary(worktree):
            check.blockers.append(f"'{worktree.path}' is the primary worktree and cannot be removed")
            return check

        if not os.path.isdir(worktree.path):
            check.warnings.append(f"Worktree directory '{worktree.path}' no longer exists")
            return check

        try:
            status = self.registry.status(worktree.path)
            dirty = not status.is_clean
        except ExecutionError as e:
            logger.warning(f"Could not check status of {worktree.path}: {e}")
            dirty = True
            status = None

        if dirty:
            detail = ""
            if status is not None:
                parts = []
                if status.modified:
                    parts.append(f"{status.modified} modified")
                if status.staged:
                    parts.append(f"{status.staged} staged")
                if status.deleted:
                    parts.append(f"{status.deleted} deleted")
                if status.untracked:
                    parts.append(f"{status.untracked} untracked")
                detail = f" ({', '.join(parts)})" if parts else ""
            check.blockers.append(f"Worktree at '{worktree.path}' has uncommitted changes{detail}")

        if worktree.locked:
            reason = f": {worktree.lock_reason}" if worktree.lock_reason else ""
            check.warnings.append(f"Worktree is locked{reason}")

        return check
