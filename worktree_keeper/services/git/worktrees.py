"""Worktree registry for git-worktree-keeper."""

import os
import re
import shutil
from typing import Any, Dict, List, Optional

from worktree_keeper.exceptions import (
    PathExistsError,
    PrimaryWorktreeError,
    UncommittedChangesError,
    WorktreeNotFoundError,
)
from worktree_keeper.models.worktree import Worktree, WorktreeStatus
from worktree_keeper.services.git.runner import GitRunner
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


def issue_pattern(number: int) -> "re.Pattern[str]":
    """Boundary-safe ``issue-N`` matcher.

    ``issue-44`` must be preceded by start, ``/``, ``-`` or ``_`` and followed
    by ``-`` or end, so it never matches ``issue-440`` or ``tissue-44``.
    """
    return re.compile(rf"(?:^|[/_-])issue-{number}(?:-|$)")


def pr_directory_pattern(number: int) -> "re.Pattern[str]":
    return re.compile(rf"_pr_{number}$")


def same_path(a: str, b: str) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)


class WorktreeRegistry:
    """Stateless view over ``git worktree``.

    Nothing is cached: every query asks git, which is the source of truth.
    There is no dry-run switch at this layer; callers decide whether to
    invoke the mutating methods.
    """

    def __init__(self, runner: GitRunner, worktree_root: Optional[str] = None):
        """Initialize the registry.

        Args:
            runner: Git command runner rooted in the repository
            worktree_root: Directory for new worktrees (default: next to the primary worktree)
        """
        self.runner = runner
        self.worktree_root = worktree_root

    def list(self) -> List[Worktree]:
        """Get all registered worktrees.

        Porcelain format, one record per worktree separated by blank lines:

            worktree /path/to/worktree
            HEAD <sha>
            branch refs/heads/<name>   (or "detached" / "bare")
            locked [reason]

        Records without a ``worktree`` line are skipped.
        """
        output = self.runner.run(["worktree", "list", "--porcelain"])

        worktrees: List[Worktree] = []
        record: Dict[str, Any] = {}
        for line in output.split("\n") + [""]:
            line = line.rstrip("\r")
            if not line.strip():
                if record:
                    worktree = self._build(record, is_primary=not worktrees)
                    if worktree:
                        worktrees.append(worktree)
                    record = {}
                continue

            key, _, value = line.partition(" ")
            if key == "worktree":
                record["path"] = value
            elif key == "HEAD":
                record["HEAD"] = value
            elif key == "branch":
                record["branch"] = value[len("refs/heads/"):] if value.startswith("refs/heads/") else ""
            elif key == "detached":
                record["branch"] = ""
            elif key == "bare":
                record["bare"] = True
            elif key == "locked":
                record["locked"] = True
                record["lock_reason"] = value or None

        logger.debug(f"Found {len(worktrees)} worktrees")
        return worktrees

    @staticmethod
    def _build(record: Dict[str, Any], is_primary: bool) -> Optional[Worktree]:
        path = record.get("path")
        if not path:
            logger.debug(f"Skipping malformed worktree record: {record}")
            return None
        return Worktree(
            path=path,
            branch=record.get("branch", ""),
            commit_hash=record.get("HEAD", ""),
            locked=record.get("locked", False),
            is_primary=is_primary,
            bare=record.get("bare", False),
            lock_reason=record.get("lock_reason"),
        )

    def primary(self) -> Optional[Worktree]:
        for worktree in self.list():
            if worktree.is_primary:
                return worktree
        return None

    def find_by_path(self, path: str) -> Optional[Worktree]:
        for worktree in self.list():
            if same_path(worktree.path, path):
                return worktree
        return None

    def find_by_branch(self, name: str) -> Optional[Worktree]:
        for worktree in self.list():
            if worktree.branch == name:
                return worktree
        return None

    def find_by_issue_number(self, number: int) -> Optional[Worktree]:
        pattern = issue_pattern(number)
        for worktree in self.list():
            if worktree.branch and pattern.search(worktree.branch):
                return worktree
        return None

    def find_by_pr_number(self, number: int, branch_hint: str = "") -> Optional[Worktree]:
        """Find a PR worktree by its head branch, then by ``*_pr_N`` directory name."""
        worktrees = self.list()
        if branch_hint:
            for worktree in worktrees:
                if worktree.branch == branch_hint:
                    return worktree

        pattern = pr_directory_pattern(number)
        for worktree in worktrees:
            if pattern.search(os.path.basename(worktree.path.rstrip(os.sep))):
                return worktree
        return None

    def find_trunk_worktree(self, trunk: str) -> Optional[Worktree]:
        return self.find_by_branch(trunk)

    def create(
        self,
        branch: str,
        path: str,
        create_branch: bool = False,
        base_branch: Optional[str] = None,
        force: bool = False,
    ) -> str:
        """Create a worktree.

        Args:
            branch: Branch to check out (or create)
            path: Target directory
            create_branch: Create ``branch`` with ``-b``
            base_branch: Starting point for a new branch
            force: Replace an existing path

        Returns:
            Absolute path of the new worktree

        Raises:
            PathExistsError: If ``path`` exists and force is not set
        """
        target = os.path.abspath(path)
        if os.path.lexists(target):
            if not force:
                raise PathExistsError(target)
            logger.info(f"Removing existing path {target}")
            if os.path.isdir(target) and not os.path.islink(target):
                shutil.rmtree(target)
            else:
                os.unlink(target)
            # Drop the registration of a worktree whose directory we just deleted
            self.prune()

        args = ["worktree", "add"]
        if create_branch:
            args.extend(["-b", branch])
        if force:
            args.append("--force")
        args.append(target)
        if create_branch:
            if base_branch:
                args.append(base_branch)
        else:
            args.append(branch)

        self.runner.run(args)
        logger.info(f"Created worktree for {branch} at {target}")
        return target

    def remove(
        self,
        path: str,
        force: bool = False,
        remove_directory: bool = False,
        remove_branch: bool = False,
    ) -> Worktree:
        """Remove a worktree.

        The primary worktree is never removed, even with ``force``.

        Raises:
            WorktreeNotFoundError: If ``path`` is not a registered worktree
            PrimaryWorktreeError: If ``path`` is the primary worktree
            UncommittedChangesError: If the worktree is dirty and force is not set
        """
        worktree = self.find_by_path(path)
        if worktree is None:
            raise WorktreeNotFoundError(path)
        if worktree.is_primary:
            raise PrimaryWorktreeError(worktree.path)
        if not force and os.path.isdir(worktree.path) and self.has_uncommitted_changes(worktree.path):
            raise UncommittedChangesError(worktree.path, action="remove it")

        args = ["worktree", "remove"]
        if force:
            args.append("--force")
            if worktree.locked:
                # A locked worktree needs the flag twice
                args.append("--force")
        args.append(worktree.path)
        self.runner.run(args)
        logger.info(f"Removed worktree at {worktree.path}")

        if remove_directory and os.path.exists(worktree.path):
            shutil.rmtree(worktree.path, ignore_errors=True)

        if remove_branch and worktree.branch:
            self.runner.run(["branch", "-D" if force else "-d", worktree.branch])
            logger.info(f"Deleted branch {worktree.branch}")

        return worktree

    def prune(self) -> None:
        """Prune metadata of worktrees whose directories are gone."""
        self.runner.run(["worktree", "prune"])
        logger.info("Pruned orphaned worktree metadata")

    def lock(self, path: str, reason: Optional[str] = None) -> None:
        args = ["worktree", "lock"]
        if reason:
            args.extend(["--reason", reason])
        args.append(path)
        self.runner.run(args)

    def unlock(self, path: str) -> None:
        self.runner.run(["worktree", "unlock", path])

    def current_branch(self, path: str) -> str:
        """Branch checked out in ``path``; empty when HEAD is detached."""
        return self.runner.run(["branch", "--show-current"], cwd=path).strip()

    def has_uncommitted_changes(self, path: str) -> bool:
        return bool(self.runner.run(["status", "--porcelain"], cwd=path).strip())

    def status(self, path: str) -> WorktreeStatus:
        """Count pending changes in a worktree.

        Porcelain format is ``XY filename``: X is the index status, Y the
        working tree status.

        Raises:
            ExecutionError: If ``git status`` fails
        """
        counts = WorktreeStatus()
        output = self.runner.run(["status", "--porcelain"], cwd=path)
        for line in output.split("\n"):
            if len(line) < 2:
                continue
            if line.startswith("??"):
                counts.untracked += 1
                continue
            index_status, worktree_status = line[0], line[1]
            if index_status != " ":
                counts.staged += 1
            if worktree_status == "D":
                counts.deleted += 1
            elif worktree_status != " ":
                counts.modified += 1
        return counts

    @staticmethod
    def sanitize_branch_name(name: str) -> str:
        """Make a branch name safe for directory and database branch names.

        >>> WorktreeRegistry.sanitize_branch_name("Feat/Issue-44_Login!")
        'feat-issue-44-login'
        """
        sanitized = name.replace("/", "-")
        sanitized = re.sub(r"[^a-zA-Z0-9-]", "-", sanitized)
        sanitized = re.sub(r"-+", "-", sanitized)
        return sanitized.strip("-").lower()

    def generate_worktree_path(self, branch: str, pr_number: Optional[int] = None) -> str:
        """Path for a new worktree: ``<root>/<repo>_<branch>[_pr_<N>]``."""
        primary = self.primary()
        repo_dir = primary.path if primary else self.runner.repo_path
        root = self.worktree_root or os.path.dirname(os.path.abspath(repo_dir))
        name = f"{os.path.basename(os.path.abspath(repo_dir))}_{self.sanitize_branch_name(branch)}"
        if pr_number is not None:
            name += f"_pr_{pr_number}"
        return os.path.join(root, name)
