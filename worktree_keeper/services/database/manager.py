"""Decides when workspaces get database branches and drives the provider"""
import os
from typing import Optional

from dotenv import dotenv_values

from worktree_keeper.exceptions import ValidationError
from worktree_keeper.models.cleanup import DatabaseDeletionOutcome
from worktree_keeper.services.database.base import DatabaseProvider
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DATABASE_URL_VAR = "DATABASE_URL"


class DatabaseBranchManager:
    """Database branching applies to a workspace when a provider is configured
    and the workspace's ``.env`` defines the database URL variable.
    """

    def __init__(self, provider: Optional[DatabaseProvider], database_url_env_var: str = DEFAULT_DATABASE_URL_VAR):
        self.provider = provider
        self.database_url_env_var = database_url_env_var
        logger.debug(f"Database branching keyed on {database_url_env_var}")

    def should_use_database_branching(self, env_path: str) -> bool:
        """Read the workspace's ``.env`` and decide.

        Raises:
            ValidationError: If a custom URL variable is configured but missing from the file
        """
        if self.provider is None or not self.provider.is_configured():
            logger.debug("Skipping database branching: no database provider configured")
            return False
        if not self.has_database_url_in_env(env_path):
            logger.debug(f"Skipping database branching: {self.database_url_env_var} not found in {env_path}")
            return False
        return True

    def has_database_url_in_env(self, env_path: str) -> bool:
        if not os.path.isfile(env_path):
            return False
        values = dotenv_values(env_path)
        if self.database_url_env_var in values:
            return True
        if self.database_url_env_var != DEFAULT_DATABASE_URL_VAR:
            raise ValidationError(
                f"Configured database URL variable '{self.database_url_env_var}' not found in {env_path}. "
                "Add it to the .env file or change database_url_env_var in your settings."
            )
        return False

    def create_branch_if_configured(self, branch_name: str, env_path: str, cwd: Optional[str] = None) -> Optional[str]:
        """Create a database branch for a new workspace.

        Returns:
            The connection string, or None when branching does not apply
        """
        if not self.should_use_database_branching(env_path):
            return None
        if not self.provider.is_cli_available():
            logger.warning(f"Skipping database branch creation: {self.provider.name} CLI not available")
            return None
        if not self.provider.is_authenticated(cwd):
            logger.warning(f"Skipping database branch creation: not authenticated with {self.provider.name}")
            return None

        connection_string = self.provider.create_branch(branch_name, cwd=cwd)
        logger.info(f"Database branch ready: {self.provider.sanitize_branch_name(branch_name)}")
        return connection_string

    def delete_branch_if_configured(
        self,
        branch_name: str,
        should_cleanup: bool,
        is_preview: bool = False,
        cwd: Optional[str] = None,
    ) -> DatabaseDeletionOutcome:
        """Delete a workspace's database branch.

        ``should_cleanup`` is the decision made from the workspace's ``.env``
        before the workspace was removed; the file is not read again here.
        Every failure comes back as a ``FAILED`` outcome.
        """
        if not should_cleanup or self.provider is None or not self.provider.is_configured():
            return DatabaseDeletionOutcome.not_found(branch_name)

        if not self.provider.is_cli_available():
            logger.info(f"Skipping database branch deletion: {self.provider.name} CLI not available")
            return DatabaseDeletionOutcome.failed(branch_name, f"{self.provider.name} CLI not available")

        try:
            if not self.provider.is_authenticated(cwd):
                return DatabaseDeletionOutcome.failed(branch_name, f"Not authenticated with {self.provider.name}")
        except Exception as e:
            logger.error(f"Database authentication check failed: {e}")
            return DatabaseDeletionOutcome.failed(branch_name, f"Authentication check failed: {e}")

        try:
            return self.provider.delete_branch(branch_name, is_preview=is_preview, cwd=cwd)
        except Exception as e:
            logger.warning(f"Unexpected error deleting database branch: {e}")
            return DatabaseDeletionOutcome.failed(branch_name, str(e))
