"""Ordered teardown of a workspace's resources"""
import os
from typing import Dict, List, Optional

from worktree_keeper.config import Settings
from worktree_keeper.exceptions import (
    ExecutionError,
    PortStillBoundError,
    PrimaryWorktreeError,
    UnsafeCleanupError,
    ValidationError,
    WorktreeNotFoundError,
)
from worktree_keeper.models.cleanup import (
    CleanupOperation,
    CleanupOptions,
    CleanupResult,
    OperationKind,
)
from worktree_keeper.models.identifier import IdentifierKind, ParsedIdentifier
from worktree_keeper.models.worktree import Worktree
from worktree_keeper.services.cli_links import CLIExecutableLinks
from worktree_keeper.services.database.manager import DatabaseBranchManager
from worktree_keeper.services.git.runner import GitRunner
from worktree_keeper.services.git.worktrees import WorktreeRegistry
from worktree_keeper.services.identifier_resolver import IdentifierResolver
from worktree_keeper.services.process_service import ProcessLifecycle
from worktree_keeper.services.safety_service import SafetyValidator
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


class CleanupOrchestrator:
    """Tears down a workspace: dev server, worktree, branch, executables, database.

    Everything that only reads (worktree lookup, protected-branch and safety
    checks, the ``.env`` database decision, the primary worktree path) happens
    before the first destructive command. After that each step is recorded on
    its own and a failing step does not stop the later ones.
    """

    def __init__(
        self,
        registry: WorktreeRegistry,
        runner: GitRunner,
        safety: SafetyValidator,
        settings: Settings,
        process_manager: Optional[ProcessLifecycle] = None,
        database: Optional[DatabaseBranchManager] = None,
        cli_links: Optional[CLIExecutableLinks] = None,
    ):
        """Initialize the orchestrator.

        Args:
            registry: Worktree registry
            runner: Git command runner for branch deletion
            safety: Shared safety checks
            settings: Settings (base port, protected branches)
            process_manager: Dev server lifecycle, or None to skip that step
            database: Database branch manager, or None to skip that step
            cli_links: Generated executable links, or None to skip that step
        """
        self.registry = registry
        self.runner = runner
        self.safety = safety
        self.settings = settings
        self.process_manager = process_manager
        self.database = database
        self.cli_links = cli_links
        self.resolver = IdentifierResolver(registry)

    def cleanup(
        self,
        identifier: ParsedIdentifier,
        options: Optional[CleanupOptions] = None,
        branch_hint: str = "",
    ) -> CleanupResult:
        """Clean up the workspace for ``identifier``.

        Returns:
            CleanupResult; a missing worktree gives a failed result with a
            WorktreeNotFoundError in ``errors`` and nothing touched

        Raises:
            ValidationError: If the branch is protected or the safety gate
                finds blockers; nothing has been changed at that point
        """
        options = options or CleanupOptions()
        result = CleanupResult(identifier=str(identifier))
        logger.info(f"Starting cleanup for {identifier}")

        if options.delete_branch and identifier.kind is IdentifierKind.BRANCH:
            self.safety.ensure_not_protected(identifier.branch_name)

        worktree = self.resolver.find_worktree(identifier, branch_hint)
        if worktree is None:
            result.errors.append(WorktreeNotFoundError(identifier.original_input or str(identifier)))
            logger.warning(f"No worktree found for {identifier}")
            return result
        logger.debug(f"Found worktree: {worktree}")
        result.branch_name = worktree.branch or None

        self._validate(worktree, identifier, options)

        main_path = self._primary_path()
        should_cleanup_database = self._prefetch_database_decision(worktree, options)

        self._stop_dev_server(identifier, options, result)
        self._remove_worktree(worktree, options, result)
        self._delete_branch(worktree, options, main_path, result)
        self._cleanup_cli_links(identifier, options, result)
        if should_cleanup_database:
            self._cleanup_database(worktree, options, main_path, result)

        if result.success:
            logger.info(f"Cleanup of {identifier} completed")
        else:
            logger.warning(f"Cleanup of {identifier} finished with {len(result.errors)} error(s)")
        return result

    def cleanup_many(
        self,
        identifiers: List[ParsedIdentifier],
        options: Optional[CleanupOptions] = None,
        branch_hints: Optional[Dict[ParsedIdentifier, str]] = None,
    ) -> List[CleanupResult]:
        """Clean up several workspaces one after another.

        ``branch_hints`` maps PR identifiers to their head branch. A validation
        failure for one identifier is recorded in its result and the remaining
        identifiers are still processed.
        """
        branch_hints = branch_hints or {}
        results = []
        for identifier in identifiers:
            try:
                results.append(self.cleanup(identifier, options, branch_hint=branch_hints.get(identifier, "")))
            except ValidationError as e:
                logger.error(str(e))
                results.append(CleanupResult(identifier=str(identifier), errors=[e]))
        return results

    # Read-only preparation

    def _validate(self, worktree: Worktree, identifier: ParsedIdentifier, options: CleanupOptions) -> None:
        if options.delete_branch and worktree.branch:
            self.safety.ensure_not_protected(worktree.branch)

        # The primary worktree is off limits even with --force
        if self.safety.is_primary(worktree):
            raise PrimaryWorktreeError(worktree.path)

        if options.force:
            return
        check = self.safety.check_cleanup_safety(worktree)
        if not check.is_safe:
            raise UnsafeCleanupError(identifier.original_input or str(identifier), check.blockers)
        for warning in check.warnings:
            logger.warning(warning)

    def _primary_path(self) -> str:
        """Working directory for commands issued after the worktree is gone."""
        try:
            primary = self.registry.primary()
        except ExecutionError as e:
            logger.warning(f"Could not determine the primary worktree: {e}")
            primary = None
        return primary.path if primary else self.runner.repo_path

    def _prefetch_database_decision(self, worktree: Worktree, options: CleanupOptions) -> bool:
        """Read the worktree's ``.env`` while it still exists."""
        if options.keep_database or self.database is None or not worktree.branch:
            return False
        env_path = os.path.join(worktree.path, ".env")
        try:
            return self.database.should_use_database_branching(env_path)
        except Exception as e:
            logger.warning(f"Skipping database cleanup, could not read {env_path}: {e}")
            return False

    # Steps

    def _stop_dev_server(self, identifier: ParsedIdentifier, options: CleanupOptions, result: CleanupResult) -> None:
        if identifier.number is None or self.process_manager is None:
            return
        port = self.settings.base_port + identifier.number
        if options.dry_run:
            result.record(CleanupOperation(
                OperationKind.DEV_SERVER, True, f"[DRY RUN] Would check for dev server on port {port}"
            ))
            return
        try:
            terminated = self.terminate_dev_server(port)
            message = f"Dev server on port {port} terminated" if terminated else f"No dev server running on port {port}"
            result.record(CleanupOperation(OperationKind.DEV_SERVER, True, message, deleted=terminated))
        except Exception as e:
            logger.error(f"Failed to terminate dev server on port {port}: {e}")
            result.fail(OperationKind.DEV_SERVER, e)

    def _remove_worktree(self, worktree: Worktree, options: CleanupOptions, result: CleanupResult) -> None:
        if options.dry_run:
            result.record(CleanupOperation(
                OperationKind.WORKTREE, True, f"[DRY RUN] Would remove worktree: {worktree.path}"
            ))
            return
        try:
            if not os.path.isdir(worktree.path):
                self.registry.prune()
                message = f"Pruned stale worktree registration: {worktree.path}"
            else:
                self.registry.remove(worktree.path, force=options.force, remove_directory=True)
                message = f"Worktree removed: {worktree.path}"
            result.record(CleanupOperation(OperationKind.WORKTREE, True, message, deleted=True))
        except Exception as e:
            logger.error(f"Failed to remove worktree {worktree.path}: {e}")
            result.fail(OperationKind.WORKTREE, e)

    def _delete_branch(self, worktree: Worktree, options: CleanupOptions, main_path: str, result: CleanupResult) -> None:
        if not options.delete_branch or not worktree.branch:
            return
        try:
            self.delete_branch(worktree.branch, force=options.force, dry_run=options.dry_run, cwd=main_path)
            if options.dry_run:
                message = f"[DRY RUN] Would delete branch: {worktree.branch}"
            else:
                message = f"Branch deleted: {worktree.branch}"
            result.record(CleanupOperation(OperationKind.BRANCH, True, message, deleted=not options.dry_run))
        except Exception as e:
            logger.error(f"Failed to delete branch {worktree.branch}: {e}")
            result.fail(OperationKind.BRANCH, e)

    def _cleanup_cli_links(self, identifier: ParsedIdentifier, options: CleanupOptions, result: CleanupResult) -> None:
        if self.cli_links is None:
            return
        key = identifier.key
        if options.dry_run:
            result.record(CleanupOperation(
                OperationKind.CLI_SYMLINKS, True, f"[DRY RUN] Would clean up CLI executables for: {key}"
            ))
            return
        try:
            removed = self.cli_links.cleanup(key)
            message = f"CLI executables removed: {len(removed)}" if removed else "No CLI executables to clean up"
            result.record(CleanupOperation(OperationKind.CLI_SYMLINKS, True, message, deleted=bool(removed)))
        except Exception as e:
            logger.warning(f"CLI executable cleanup failed: {e}")
            result.fail(OperationKind.CLI_SYMLINKS, e)

    def _cleanup_database(self, worktree: Worktree, options: CleanupOptions, main_path: str, result: CleanupResult) -> None:
        if options.dry_run:
            result.record(CleanupOperation(
                OperationKind.DATABASE, True, f"[DRY RUN] Would clean up database branch for: {worktree.branch}"
            ))
            return
        outcome = self.database.delete_branch_if_configured(
            worktree.branch, should_cleanup=True, is_preview=False, cwd=main_path
        )
        if outcome.is_error:
            error = ExecutionError("delete_database_branch", outcome.error)
            result.errors.append(error)
            result.record(CleanupOperation(
                OperationKind.DATABASE, False, outcome.describe(), error=str(error), deleted=False
            ))
        else:
            result.record(CleanupOperation(
                OperationKind.DATABASE, True, outcome.describe(), deleted=outcome.was_deleted
            ))

    # Individual operations

    def terminate_dev_server(self, port: int) -> bool:
        """Stop a dev server listening on ``port``.

        Returns:
            True if a dev server was terminated, False if there was nothing to stop

        Raises:
            PortStillBoundError: If the port is still bound afterwards
        """
        if self.process_manager is None:
            return False
        info = self.process_manager.detect_listener_on_port(port)
        if info is None:
            logger.debug(f"No process found on port {port}")
            return False
        if not info.looks_like_dev_server:
            logger.warning(f"Process on port {port} ({info.name}) doesn't look like a dev server, leaving it running")
            return False

        logger.info(f"Terminating dev server: {info.name} (PID {info.pid})")
        self.process_manager.terminate(info.pid)
        if not self.process_manager.verify_port_free(port):
            raise PortStillBoundError(port, info.pid)
        return True

    def delete_branch(self, branch: str, force: bool = False, dry_run: bool = False, cwd: Optional[str] = None) -> bool:
        """Delete a local branch.

        Protected branches are rejected before any git command runs.

        Raises:
            ProtectedBranchError: If ``branch`` is protected
            ExecutionError: If git refuses; unmerged branches get a hint to use --force
        """
        self.safety.ensure_not_protected(branch)

        if dry_run:
            logger.info(f"[DRY RUN] Would delete branch {branch}")
            return True

        try:
            self.runner.run(["branch", "-D" if force else "-d", branch], cwd=cwd or self._primary_path())
        except ExecutionError as e:
            if "not fully merged" in f"{e.stderr} {e.message}":
                raise ExecutionError(
                    "delete_branch",
                    f"Cannot delete unmerged branch '{branch}'. Use --force to delete anyway.",
                    command=e.command,
                    stderr=e.stderr,
                ) from e
            raise
        logger.info(f"Deleted branch {branch}")
        return True
