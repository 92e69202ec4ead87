"""Core functionality for git-worktree-keeper"""

import os
from typing import Dict, List, Optional, Tuple, Union

import git
from rich.console import Console
from rich.markup import escape

from worktree_keeper.config import Settings
from worktree_keeper.exceptions import ExecutionError, WorktreeKeeperError, WorktreeNotFoundError
from worktree_keeper.models.cleanup import CleanupOptions, CleanupResult
from worktree_keeper.models.identifier import IdentifierKind, ParsedIdentifier
from worktree_keeper.models.integration import IntegrationRequest, MergeOutcome
from worktree_keeper.models.worktree import Worktree, WorktreeStatus
from worktree_keeper.services.agent_service import ClaudeAgent
from worktree_keeper.services.cleanup_service import CleanupOrchestrator
from worktree_keeper.services.cli_links import CLIExecutableLinks
from worktree_keeper.services.database import DatabaseBranchManager, create_provider
from worktree_keeper.services.display_service import DisplayService
from worktree_keeper.services.git import GitRunner, IntegrationEngine, WorktreeRegistry
from worktree_keeper.services.github_service import GitHubService
from worktree_keeper.services.identifier_resolver import IdentifierResolver
from worktree_keeper.services.process_service import ProcessManager
from worktree_keeper.services.safety_service import SafetyValidator
from worktree_keeper.utils.logging import get_logger

console = Console()
logger = get_logger(__name__)


class WorkspaceKeeper:
    """Main class for managing worktree workspaces."""

    def __init__(self, repo_path: str, settings: Union[Settings, dict]):
        """Initialize WorkspaceKeeper.

        Args:
            repo_path: Any path inside the repository or one of its worktrees
            settings: Settings object or dict
        """
        if isinstance(settings, dict):
            self.settings = Settings.from_dict(settings)
        else:
            self.settings = settings

        try:
            self.repo = git.Repo(repo_path, search_parent_directories=True)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise WorktreeKeeperError(f"Not a git repository: {repo_path}") from e
        self.repo_path = self.repo.working_tree_dir

        self.runner = GitRunner(self.repo_path)
        self.registry = WorktreeRegistry(self.runner, worktree_root=self.settings.worktree_root)
        self.safety = SafetyValidator(self.registry, self.settings)
        self.resolver = IdentifierResolver(self.registry)

        agent = None if self.settings.skip_agent else ClaudeAgent(timeout=self.settings.agent_timeout)
        self.engine = IntegrationEngine(self.runner, self.registry, self.settings, agent=agent)

        self.database = DatabaseBranchManager(create_provider(self.settings), self.settings.database_url_env_var)
        self.cleanup_orchestrator = CleanupOrchestrator(
            self.registry,
            self.runner,
            self.safety,
            self.settings,
            process_manager=ProcessManager(base_port=self.settings.base_port),
            database=self.database,
            cli_links=CLIExecutableLinks(self.settings.bin_dir),
        )

        self.display_service = DisplayService(verbose=self.settings.verbose, debug=self.settings.debug)
        self.github_service = GitHubService(self.settings)
        self._github_ready = False

    def _github(self) -> GitHubService:
        if not self._github_ready:
            self._github_ready = True
            try:
                self.github_service.setup_github_api(self.repo.remote("origin").url)
            except ValueError:
                logger.debug("No 'origin' remote, GitHub lookups disabled")
        return self.github_service

    # Listing

    def list_worktrees(self) -> List[Worktree]:
        worktrees = self.registry.list()
        statuses: Dict[str, Optional[WorktreeStatus]] = {}
        for worktree in worktrees:
            if worktree.bare or not os.path.isdir(worktree.path):
                statuses[worktree.path] = None
                continue
            try:
                statuses[worktree.path] = self.registry.status(worktree.path)
            except ExecutionError as e:
                logger.warning(f"Could not check worktree status for {worktree.path}: {e}")
                statuses[worktree.path] = None
        self.display_service.display_worktree_table(worktrees, statuses, self.safety.protected_branches)
        return worktrees

    # Creation

    def create_worktree(
        self,
        branch: str,
        base_branch: Optional[str] = None,
        pr_number: Optional[int] = None,
        existing: bool = False,
        force: bool = False,
    ) -> str:
        """Create a workspace for ``branch`` and, if configured, its database branch."""
        path = self.registry.generate_worktree_path(branch, pr_number=pr_number)
        created = self.registry.create(
            branch,
            path,
            create_branch=not existing,
            base_branch=base_branch or (None if existing else self.settings.main_branch),
            force=force,
        )
        console.print(f"[green]Created worktree for {escape(branch)} at {escape(created)}[/green]")

        env_path = os.path.join(created, ".env")
        if not os.path.exists(env_path):
            env_path = os.path.join(self.registry.primary().path, ".env")
        connection_string = self.database.create_branch_if_configured(branch, env_path, cwd=created)
        if connection_string:
            console.print(
                f"[green]Database branch ready.[/green] Set {self.settings.database_url_env_var} "
                f"in {escape(os.path.join(created, '.env'))} to use it."
            )
        return created

    # Identification

    def resolve_identifier(self, raw_input: Optional[str] = None, cwd: Optional[str] = None) -> ParsedIdentifier:
        """Explicit input is resolved on its own; without input the current
        directory and branch decide.
        """
        if raw_input:
            return self.resolver.resolve(raw_input)

        cwd = cwd or os.getcwd()
        try:
            current_branch = self.registry.current_branch(cwd)
        except ExecutionError:
            current_branch = None
        return self.resolver.resolve(None, os.path.basename(os.path.abspath(cwd)), current_branch)

    def _branch_hint(self, identifier: ParsedIdentifier) -> str:
        if identifier.kind is not IdentifierKind.PR:
            return ""
        return self._github().get_pr_head_branch(identifier.number)

    def find_worktree(self, identifier: ParsedIdentifier) -> Worktree:
        worktree = self.resolver.find_worktree(identifier, self._branch_hint(identifier))
        if worktree is None:
            raise WorktreeNotFoundError(identifier.original_input or str(identifier))
        return worktree

    # Integration

    def rebase(self, worktree_path: Optional[str] = None) -> MergeOutcome:
        return self.engine.rebase_onto_trunk(
            worktree_path or os.getcwd(), force=self.settings.force, dry_run=self.settings.dry_run
        )

    def finish(
        self,
        raw_input: Optional[str] = None,
        keep_branch: bool = False,
        keep_database: bool = False,
        cwd: Optional[str] = None,
    ) -> Tuple[MergeOutcome, CleanupResult]:
        """Rebase a workspace onto trunk, fast-forward trunk, then clean it up."""
        identifier = self.resolve_identifier(raw_input, cwd=cwd)
        worktree = self.find_worktree(identifier)
        console.print(f"Finishing {identifier} ({worktree.branch} @ {worktree.path})", markup=False)

        outcome = self.engine.integrate(IntegrationRequest(
            worktree_path=worktree.path,
            trunk_branch=self.settings.main_branch,
            force=self.settings.force,
            dry_run=self.settings.dry_run,
        ))
        self.display_service.display_merge_outcome(outcome)

        options = CleanupOptions(
            force=self.settings.force,
            dry_run=self.settings.dry_run,
            delete_branch=not keep_branch,
            keep_database=keep_database,
        )
        result = self.cleanup_orchestrator.cleanup(identifier, options, branch_hint=worktree.branch)
        self.display_service.display_cleanup_result(result)
        return outcome, result

    # Cleanup

    def cleanup(
        self,
        raw_inputs: List[str],
        delete_branch: bool = False,
        keep_database: bool = False,
    ) -> List[CleanupResult]:
        """Clean up one or more workspaces, strictly one at a time."""
        identifiers = [self.resolver.resolve(raw) for raw in raw_inputs]
        options = CleanupOptions(
            force=self.settings.force,
            dry_run=self.settings.dry_run,
            delete_branch=delete_branch,
            keep_database=keep_database,
        )
        hints = {identifier: self._branch_hint(identifier) for identifier in identifiers}
        results = self.cleanup_orchestrator.cleanup_many(identifiers, options, branch_hints=hints)
        for result in results:
            self.display_service.display_cleanup_result(result)
        return results
