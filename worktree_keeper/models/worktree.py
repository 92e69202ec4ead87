"""Worktree data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Worktree:
    """A registered git worktree, as reported by ``git worktree list``."""

    path: str
    branch: str  # Empty when HEAD is detached
    commit_hash: str
    locked: bool = False
    is_primary: bool = False  # Is this the worktree at the repository root?
    bare: bool = False
    lock_reason: Optional[str] = None

    @property
    def detached(self) -> bool:
        return not self.branch and not self.bare

    def __str__(self) -> str:
        branch = self.branch or "(detached)"
        markers = ""
        if self.is_primary:
            markers += " (primary)"
        if self.locked:
            markers += " [locked]"
        return f"{branch} @ {self.path}{markers}"


@dataclass
class WorktreeStatus:
    """Counts of pending changes in a worktree."""

    modified: int = 0
    staged: int = 0
    deleted: int = 0
    untracked: int = 0

    @property
    def is_clean(self) -> bool:
        return not (self.modified or self.staged or self.deleted or self.untracked)
