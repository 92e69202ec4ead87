"""Rebase and fast-forward merge for git-worktree-keeper."""

import os
from typing import List, Optional

from worktree_keeper.config import Settings
from worktree_keeper.exceptions import (
    ConflictError,
    ExecutionError,
    MergeFailedError,
    NoTrunkWorktreeError,
    NotFastForwardableError,
    TrunkMissingError,
    UncommittedChangesError,
    UnexpectedBranchError,
    ValidationError,
    WorktreeKeeperError,
)
from worktree_keeper.models.integration import IntegrationRequest, IntegrationState, MergeOutcome
from worktree_keeper.services.agent_service import CONFLICT_RESOLUTION_PROMPT, ConflictResolutionAgent
from worktree_keeper.services.git.runner import GitRunner
from worktree_keeper.services.git.worktrees import WorktreeRegistry
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


class IntegrationEngine:
    """Rebases workspace branches onto trunk and fast-forwards trunk to them.

    Only linear history is produced: a rebase followed by ``merge --ff-only``.
    Rebase conflicts get one attempt from the conflict resolution agent;
    fast-forward failures are never resolved automatically.
    """

    def __init__(
        self,
        runner: GitRunner,
        registry: WorktreeRegistry,
        settings: Settings,
        agent: Optional[ConflictResolutionAgent] = None,
    ):
        """Initialize the engine.

        Args:
            runner: Git command runner
            registry: Worktree registry used to find the trunk worktree
            settings: Settings providing the trunk branch name
            agent: Conflict resolution agent, or None to never attempt one
        """
        self.runner = runner
        self.registry = registry
        self.settings = settings
        self.agent = agent
        self.state: Optional[IntegrationState] = None
        self.history: List[IntegrationState] = []

    @property
    def trunk(self) -> str:
        return self.settings.main_branch

    def _transition(self, state: IntegrationState) -> None:
        logger.debug(f"Integration state: {self.state.value if self.state else 'start'} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _reset(self) -> None:
        self.state = None
        self.history = []

    def _git(self, args: List[str], cwd: str) -> str:
        return self.runner.run(args, cwd=cwd).strip()

    # Rebase

    def rebase_onto_trunk(
        self,
        worktree_path: str,
        force: bool = False,
        dry_run: bool = False,
        trunk: Optional[str] = None,
    ) -> MergeOutcome:
        """Rebase the branch checked out in ``worktree_path`` onto trunk.

        Args:
            worktree_path: Worktree whose branch is rebased
            force: Skip confirmations (the clean-tree check still applies)
            dry_run: Validate and report without rebasing
            trunk: Trunk branch (default: ``settings.main_branch``)

        Returns:
            MergeOutcome with ``rebase_performed`` False when nothing had to move

        Raises:
            TrunkMissingError: If trunk does not exist locally
            UncommittedChangesError: If the worktree is dirty, even in dry-run
            ConflictError: If conflicts remain after automated resolution
            ExecutionError: If the rebase fails for another reason
        """
        self._reset()
        try:
            return self._rebase(worktree_path, force, dry_run, trunk or self.trunk)
        except WorktreeKeeperError:
            self._transition(IntegrationState.FAILED)
            raise

    def _rebase(self, worktree_path: str, force: bool, dry_run: bool, trunk: str) -> MergeOutcome:
        self._transition(IntegrationState.VALIDATING)
        logger.info(f"Starting rebase on {trunk}")

        if not self.runner.succeeds(["show-ref", "--verify", "--quiet", f"refs/heads/{trunk}"], cwd=worktree_path):
            raise TrunkMissingError(trunk)

        if self.registry.has_uncommitted_changes(worktree_path):
            raise UncommittedChangesError(worktree_path, action="rebase")

        branch = self.registry.current_branch(worktree_path)

        merge_base = self._git(["merge-base", trunk, "HEAD"], worktree_path)
        trunk_head = self._git(["rev-parse", trunk], worktree_path)
        if merge_base == trunk_head:
            logger.info(f"Branch is already up to date with {trunk}, no rebase needed")
            self._transition(IntegrationState.COMPLETE)
            return MergeOutcome(success=True, branch_name=branch)

        commits = self._commit_lines(f"{trunk}..HEAD", worktree_path)
        if commits:
            logger.info(f"Found {len(commits)} commit(s) to rebase:")
            for commit in commits:
                logger.info(f"  {commit}")
        else:
            logger.info(f"{trunk} has moved forward, rebasing to update branch")

        self._transition(IntegrationState.REBASING)
        if dry_run:
            logger.info(f"[DRY RUN] Would execute: git rebase {trunk}")
            return MergeOutcome(success=True, branch_name=branch, commits_integrated=len(commits))

        if not force:
            logger.info("Proceeding with rebase (use --force to skip confirmations)")

        try:
            self.runner.run(["rebase", trunk], cwd=worktree_path)
        except ExecutionError as e:
            self._recover_from_failed_rebase(worktree_path, trunk, e)

        logger.info("Rebase completed successfully")
        self._transition(IntegrationState.COMPLETE)
        return MergeOutcome(
            success=True, branch_name=branch, commits_integrated=len(commits), rebase_performed=True
        )

    def _recover_from_failed_rebase(self, worktree_path: str, trunk: str, error: ExecutionError) -> None:
        """Try the agent once; return only if the rebase finished cleanly."""
        conflicted = self.detect_conflicted_files(worktree_path)
        if not conflicted:
            raise ExecutionError(
                "rebase",
                f"{error.message}\nRun: git status for more details\n"
                "Or: git rebase --abort to cancel the rebase",
                command=error.command,
                stderr=error.stderr,
            ) from error

        self._transition(IntegrationState.CONFLICT_DETECTED)
        logger.warning(f"Rebase stopped with conflicts in {len(conflicted)} file(s)")

        if self.agent is None or not self.agent.is_available():
            logger.debug("No conflict resolution agent available")
            self._transition(IntegrationState.CONFLICT_UNRESOLVED)
            raise ConflictError(conflicted)

        self._transition(IntegrationState.RESOLVING_CONFLICTS)
        logger.info(f"Asking the conflict resolution agent to resolve {len(conflicted)} file(s)")
        try:
            self.agent.invoke(CONFLICT_RESOLUTION_PROMPT, worktree_path, interactive=False)
        except Exception as e:
            logger.warning(f"Conflict resolution agent failed: {e}")

        remaining = self.detect_conflicted_files(worktree_path)
        if remaining:
            self._transition(IntegrationState.CONFLICT_UNRESOLVED)
            raise ConflictError(remaining, reason="conflicts remain after automated resolution")

        if self.is_rebase_in_progress(worktree_path):
            self._transition(IntegrationState.CONFLICT_UNRESOLVED)
            raise ConflictError(conflicted, reason="the rebase is still in progress")

        merge_base = self._git(["merge-base", trunk, "HEAD"], worktree_path)
        if merge_base != self._git(["rev-parse", trunk], worktree_path):
            self._transition(IntegrationState.CONFLICT_UNRESOLVED)
            raise ConflictError(conflicted, reason="the rebase was aborted")

        self._transition(IntegrationState.CONFLICT_RESOLVED)
        logger.info("Conflicts resolved, rebase completed")

    def detect_conflicted_files(self, worktree_path: str) -> List[str]:
        try:
            output = self.runner.run(["diff", "--name-only", "--diff-filter=U"], cwd=worktree_path)
        except ExecutionError:
            return []
        return [line.strip() for line in output.split("\n") if line.strip()]

    def is_rebase_in_progress(self, worktree_path: str) -> bool:
        """Check for rebase state directories.

        Linked worktrees keep their state under the main repository's
        ``.git/worktrees/<name>``, so paths come from ``rev-parse --git-path``.
        """
        for name in ("rebase-merge", "rebase-apply"):
            try:
                state_path = self._git(["rev-parse", "--git-path", name], worktree_path)
            except ExecutionError:
                continue
            if not os.path.isabs(state_path):
                state_path = os.path.join(worktree_path, state_path)
            if os.path.exists(state_path):
                return True
        return False

    # Fast-forward merge

    def validate_fast_forward_possible(self, branch: str, repo_root: str, trunk: Optional[str] = None) -> None:
        """Check that trunk can be fast-forwarded to ``branch``.

        Raises:
            NotFastForwardableError: Unless ``merge-base(trunk, branch) == rev-parse(trunk)``
        """
        trunk = trunk or self.trunk
        try:
            merge_base = self._git(["merge-base", trunk, branch], repo_root)
        except ExecutionError as e:
            # No common ancestor
            raise NotFastForwardableError(branch, trunk) from e
        trunk_head = self._git(["rev-parse", trunk], repo_root)
        if merge_base != trunk_head:
            raise NotFastForwardableError(branch, trunk, merge_base, trunk_head)

    def perform_fast_forward_merge(
        self,
        branch: str,
        worktree_path: str,
        force: bool = False,
        dry_run: bool = False,
        trunk: Optional[str] = None,
    ) -> MergeOutcome:
        """Fast-forward trunk to ``branch``.

        The merge runs in the worktree that has trunk checked out, never in
        ``worktree_path``, which may be removed right afterwards.

        Raises:
            NoTrunkWorktreeError: If no worktree has trunk checked out
            UnexpectedBranchError: If that worktree is not actually on trunk
            NotFastForwardableError: If trunk has moved past the branch
            MergeFailedError: If ``git merge --ff-only`` fails
        """
        self._reset()
        try:
            return self._merge(branch, worktree_path, force, dry_run, trunk or self.trunk)
        except WorktreeKeeperError:
            self._transition(IntegrationState.FAILED)
            raise

    def _merge(self, branch: str, worktree_path: str, force: bool, dry_run: bool, trunk: str) -> MergeOutcome:
        self._transition(IntegrationState.VALIDATING)
        logger.info(f"Starting fast-forward merge of {branch} (from {worktree_path})")

        trunk_worktree = self.registry.find_trunk_worktree(trunk)
        if trunk_worktree is None:
            raise NoTrunkWorktreeError(trunk)
        logger.debug(f"Using {trunk} worktree at {trunk_worktree.path}")

        current = self.registry.current_branch(trunk_worktree.path)
        if current != trunk:
            raise UnexpectedBranchError(trunk_worktree.path, trunk, current)

        self.validate_fast_forward_possible(branch, trunk_worktree.path, trunk=trunk)

        commits = self._commit_lines(f"{trunk}..{branch}", trunk_worktree.path)
        if not commits:
            logger.info(f"Branch is already merged into {trunk}, no merge needed")
            self._transition(IntegrationState.COMPLETE)
            return MergeOutcome(success=True, branch_name=branch)

        logger.info(f"Found {len(commits)} commit(s) to merge:")
        for commit in commits:
            logger.info(f"  {commit}")

        self._transition(IntegrationState.MERGING)
        if dry_run:
            logger.info(f"[DRY RUN] Would execute: git merge --ff-only {branch}")
            return MergeOutcome(success=True, branch_name=branch, commits_integrated=len(commits))

        if not force:
            logger.info("Proceeding with fast-forward merge (use --force to skip confirmations)")

        try:
            self.runner.run(["merge", "--ff-only", branch], cwd=trunk_worktree.path)
        except ExecutionError as e:
            raise MergeFailedError(branch, trunk, e.stderr or e.message or "") from e

        logger.info(f"Fast-forward merge completed, merged {len(commits)} commit(s)")
        self._transition(IntegrationState.COMPLETE)
        return MergeOutcome(
            success=True, branch_name=branch, commits_integrated=len(commits), merge_performed=True
        )

    def integrate(self, request: IntegrationRequest) -> MergeOutcome:
        """Rebase the worktree's branch onto trunk, then fast-forward trunk to it."""
        branch = self.registry.current_branch(request.worktree_path)
        if not branch:
            raise ValidationError(f"Worktree at '{request.worktree_path}' is in detached HEAD state")
        if branch == request.trunk_branch:
            raise ValidationError(f"Worktree at '{request.worktree_path}' is on trunk branch '{branch}'")

        rebased = self.rebase_onto_trunk(
            request.worktree_path, force=request.force, dry_run=request.dry_run, trunk=request.trunk_branch
        )
        rebase_history = list(self.history)
        if request.dry_run and self.state is IntegrationState.REBASING:
            # Trunk cannot be fast-forwarded until the skipped rebase happens
            logger.info(f"[DRY RUN] Would fast-forward {request.trunk_branch} to {branch} after rebasing")
            return MergeOutcome(success=True, branch_name=branch, commits_integrated=rebased.commits_integrated)
        merged = self.perform_fast_forward_merge(
            branch, request.worktree_path, force=request.force, dry_run=request.dry_run, trunk=request.trunk_branch
        )
        self.history = rebase_history + self.history

        return MergeOutcome(
            success=rebased.success and merged.success,
            branch_name=branch,
            commits_integrated=merged.commits_integrated or rebased.commits_integrated,
            rebase_performed=rebased.rebase_performed,
            merge_performed=merged.merge_performed,
        )

    def _commit_lines(self, revision_range: str, cwd: str) -> List[str]:
        output = self._git(["log", "--oneline", revision_range], cwd)
        return [line for line in output.split("\n") if line.strip()]
