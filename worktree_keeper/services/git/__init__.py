"""Git-related services for git-worktree-keeper."""

from .runner import GitRunner
from .worktrees import WorktreeRegistry
from .integration import IntegrationEngine

__all__ = [
    "GitRunner",
    "WorktreeRegistry",
    "IntegrationEngine",
]
