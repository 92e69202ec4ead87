"""Database branch providers for git-worktree-keeper."""

from typing import Optional

from worktree_keeper.config import Settings

from .base import DatabaseProvider
from .manager import DatabaseBranchManager
from .neon import NeonProvider


def create_provider(settings: Settings) -> Optional[DatabaseProvider]:
    """Provider selected by ``settings.database_provider``."""
    if settings.database_provider == "neon":
        return NeonProvider(settings.neon_project_id, settings.neon_parent_branch)
    return None


__all__ = [
    "DatabaseProvider",
    "DatabaseBranchManager",
    "NeonProvider",
    "create_provider",
]
