"""Core workflows for git-worktree-keeper."""

from .workspace_keeper import WorkspaceKeeper

__all__ = ["WorkspaceKeeper"]
