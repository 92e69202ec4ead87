"""Integration (rebase + fast-forward merge) models"""
from dataclasses import dataclass
from enum import Enum


class IntegrationState(Enum):
    """States of the rebase/merge state machine."""
    VALIDATING = "validating"
    REBASING = "rebasing"
    CONFLICT_DETECTED = "conflict-detected"
    RESOLVING_CONFLICTS = "resolving-conflicts"
    CONFLICT_RESOLVED = "conflict-resolved"
    CONFLICT_UNRESOLVED = "conflict-unresolved"
    MERGING = "merging"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class IntegrationRequest:
    """Request to integrate a worktree's branch into trunk."""
    worktree_path: str
    trunk_branch: str = "main"
    force: bool = False
    dry_run: bool = False


@dataclass
class MergeOutcome:
    """Result of a rebase, a merge, or both."""
    success: bool
    branch_name: str
    commits_integrated: int = 0
    rebase_performed: bool = False
    merge_performed: bool = False
