"""Database branch provider contract"""
from abc import ABC, abstractmethod
from typing import Optional

from worktree_keeper.models.cleanup import DatabaseDeletionOutcome


class DatabaseProvider(ABC):
    """A hosted database that supports per-workspace branches.

    ``is_authenticated`` returns False when the user is simply not logged in
    and raises on unexpected failures. ``delete_branch`` reports "nothing to
    delete" and "user declined" as outcomes, not exceptions.
    """

    name = "database"

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    def is_cli_available(self) -> bool:
        ...

    @abstractmethod
    def is_authenticated(self, cwd: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    def create_branch(self, name: str, from_branch: Optional[str] = None, cwd: Optional[str] = None) -> str:
        """Create (or reuse) a branch and return its connection string."""
        ...

    @abstractmethod
    def delete_branch(self, name: str, is_preview: bool = False, cwd: Optional[str] = None) -> DatabaseDeletionOutcome:
        ...

    @abstractmethod
    def sanitize_branch_name(self, name: str) -> str:
        ...
