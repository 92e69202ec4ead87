"""Neon database branch provider"""
import json
import re
import shutil
import subprocess
from typing import Callable, List, Optional

from rich.markup import escape
from rich.prompt import Confirm

from worktree_keeper.exceptions import ExecutionError
from worktree_keeper.models.cleanup import DatabaseDeletionOutcome
from worktree_keeper.services.database.base import DatabaseProvider
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

PROJECT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")


def confirm_preview_deletion(branch_name: str) -> bool:
    return Confirm.ask(f"Delete preview database '{escape(branch_name)}' anyway?", default=False)


class NeonProvider(DatabaseProvider):
    """Database branches on Neon, driven through the ``neon`` CLI."""

    name = "neon"

    def __init__(
        self,
        project_id: Optional[str],
        parent_branch: Optional[str],
        executable: str = "neon",
        timeout: int = 30,
        confirm: Callable[[str], bool] = confirm_preview_deletion,
    ):
        """Initialize the provider.

        Args:
            project_id: Neon project id
            parent_branch: Branch new database branches are created from
            executable: Name or path of the Neon CLI
            timeout: Seconds allowed per CLI call
            confirm: Asks whether a preview database may be deleted
        """
        self.project_id = project_id
        self.parent_branch = parent_branch
        self.executable = executable
        self.timeout = timeout
        self.confirm = confirm

    def validate(self) -> Optional[str]:
        """Return a configuration problem, or None if the config is usable."""
        if not self.project_id:
            return "NEON_PROJECT_ID is required"
        if not self.parent_branch:
            return "NEON_PARENT_BRANCH is required"
        if not PROJECT_ID_PATTERN.match(self.project_id):
            return "NEON_PROJECT_ID contains invalid characters"
        return None

    def is_configured(self) -> bool:
        problem = self.validate()
        if problem:
            logger.debug(f"Neon not configured: {problem}")
        return problem is None

    def is_cli_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def is_authenticated(self, cwd: Optional[str] = None) -> bool:
        if not self.is_cli_available():
            return False
        try:
            subprocess.run(
                [self.executable, "me"], cwd=cwd, capture_output=True, text=True, timeout=10, check=True
            )
            return True
        except subprocess.CalledProcessError:
            return False
        except (subprocess.TimeoutExpired, OSError) as e:
            raise ExecutionError("neon me", f"could not check Neon authentication: {e}") from e

    def _run(self, args: List[str], cwd: Optional[str] = None) -> str:
        command = [self.executable, *args]
        logger.debug(f"Running {' '.join(command)}")
        try:
            result = subprocess.run(
                command, cwd=cwd, capture_output=True, text=True, timeout=self.timeout, check=True
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip() or f"exit code {e.returncode}"
            raise ExecutionError(f"neon {args[0]}", f"Neon CLI command failed: {stderr}",
                                 command=command, stderr=stderr) from e
        except (subprocess.TimeoutExpired, OSError) as e:
            raise ExecutionError(f"neon {args[0]}", f"Neon CLI command failed: {e}", command=command) from e
        return result.stdout

    def sanitize_branch_name(self, name: str) -> str:
        return name.replace("/", "_")

    def list_branches(self, cwd: Optional[str] = None) -> List[str]:
        output = self._run(["branches", "list", "--project-id", self.project_id, "--output", "json"], cwd=cwd)
        try:
            branches = json.loads(output)
        except json.JSONDecodeError as e:
            raise ExecutionError("neon branches list", f"unexpected output from Neon CLI: {e}") from e
        return [branch["name"] for branch in branches if isinstance(branch, dict) and "name" in branch]

    def branch_exists(self, name: str, cwd: Optional[str] = None) -> bool:
        return name in self.list_branches(cwd=cwd)

    def get_connection_string(self, branch: str, cwd: Optional[str] = None) -> str:
        return self._run(
            ["connection-string", "--branch", branch, "--project-id", self.project_id], cwd=cwd
        ).strip()

    def find_preview_branch(self, branch_name: str, cwd: Optional[str] = None) -> Optional[str]:
        """Preview deployments create ``preview/<branch>`` or ``preview_<branch>`` databases."""
        existing = self.list_branches(cwd=cwd)
        for candidate in (f"preview/{branch_name}", f"preview_{self.sanitize_branch_name(branch_name)}"):
            if candidate in existing:
                logger.info(f"Found preview database: {candidate}")
                return candidate
        return None

    def create_branch(self, name: str, from_branch: Optional[str] = None, cwd: Optional[str] = None) -> str:
        preview = self.find_preview_branch(name, cwd=cwd)
        if preview:
            logger.info(f"Using existing preview database: {preview}")
            return self.get_connection_string(preview, cwd=cwd)

        sanitized = self.sanitize_branch_name(name)
        parent = from_branch or self.parent_branch
        logger.info(f"Creating Neon database branch {sanitized} from {parent}")
        self._run(
            ["branches", "create", "--name", sanitized, "--parent", parent, "--project-id", self.project_id],
            cwd=cwd,
        )
        return self.get_connection_string(sanitized, cwd=cwd)

    def delete_branch(self, name: str, is_preview: bool = False, cwd: Optional[str] = None) -> DatabaseDeletionOutcome:
        sanitized = self.sanitize_branch_name(name)
        try:
            if is_preview:
                preview = self.find_preview_branch(name, cwd=cwd)
                if preview:
                    logger.warning(
                        f"'{preview}' is a preview database managed by your deployment platform; "
                        "deleting it may break preview deployments"
                    )
                    if not self.confirm(preview):
                        logger.info("Skipping preview database deletion")
                        return DatabaseDeletionOutcome.user_declined(preview)
                    self._run(["branches", "delete", preview, "--project-id", self.project_id], cwd=cwd)
                    return DatabaseDeletionOutcome.deleted(preview)

            if not self.branch_exists(sanitized, cwd=cwd):
                logger.info(f"No database branch found for '{name}'")
                return DatabaseDeletionOutcome.not_found(sanitized)

            logger.info(f"Deleting Neon database branch: {sanitized}")
            self._run(["branches", "delete", sanitized, "--project-id", self.project_id], cwd=cwd)
            return DatabaseDeletionOutcome.deleted(sanitized)
        except ExecutionError as e:
            return DatabaseDeletionOutcome.failed(sanitized, str(e))
