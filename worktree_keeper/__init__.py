"""
git-worktree-keeper - Isolated git worktree workspaces with safe integration and cleanup
"""

from .__version__ import __version__
from .core import WorkspaceKeeper
from .cli.main import main

__all__ = ["WorkspaceKeeper", "main", "__version__"]
