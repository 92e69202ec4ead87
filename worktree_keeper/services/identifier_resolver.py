"""Identifier resolution for git-worktree-keeper"""
import re
from typing import Optional

from worktree_keeper.models.identifier import IdentifierKind, ParsedIdentifier
from worktree_keeper.models.worktree import Worktree
from worktree_keeper.services.git.worktrees import WorktreeRegistry
from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)

PR_DIRECTORY = re.compile(r"_pr_(\d+)$")
ISSUE_TOKEN = re.compile(r"(?:^|[/_-])issue-(\d+)(?:-|$)")
EXPLICIT_PR = re.compile(r"^(?:pr[/-]|pull/)(\d+)$", re.IGNORECASE)
EXPLICIT_ISSUE = re.compile(r"^#?(\d+)$")


class IdentifierResolver:
    """Maps issue numbers, PR numbers, branch and directory names to worktrees.

    Resolution order, first match wins:

    1. directory name ends in ``_pr_N``           -> PR N
    2. directory name contains ``issue-N``        -> issue N
    3. current branch contains ``issue-N``        -> issue N
    4. explicit raw input ``pr/N``, ``pr-N``, ``pull/N`` -> PR N; ``#N``, ``N`` -> issue N
    5. otherwise the raw input (verbatim) or the current branch as a branch name

    Directory context comes first so a workspace renamed after its PR was
    opened still resolves to the PR.
    """

    def __init__(self, registry: Optional[WorktreeRegistry] = None):
        self.registry = registry

    def resolve(
        self,
        raw_input: Optional[str] = None,
        current_directory_name: Optional[str] = None,
        current_branch: Optional[str] = None,
    ) -> ParsedIdentifier:
        """Resolve an identifier.

        Raises:
            ValueError: If there is no input and no context to resolve from
        """
        raw = (raw_input or "").strip()
        original = raw or current_directory_name or current_branch or ""

        if current_directory_name:
            match = PR_DIRECTORY.search(current_directory_name)
            if match:
                return self._found(ParsedIdentifier.pr(int(match.group(1)), original), "directory name")
            match = ISSUE_TOKEN.search(current_directory_name)
            if match:
                return self._found(ParsedIdentifier.issue(int(match.group(1)), original), "directory name")

        if current_branch:
            match = ISSUE_TOKEN.search(current_branch)
            if match:
                return self._found(ParsedIdentifier.issue(int(match.group(1)), original), "current branch")

        if raw:
            match = EXPLICIT_PR.match(raw)
            if match:
                return self._found(ParsedIdentifier.pr(int(match.group(1)), original), "input")
            match = EXPLICIT_ISSUE.match(raw)
            if match:
                return self._found(ParsedIdentifier.issue(int(match.group(1)), original), "input")
            return self._found(ParsedIdentifier.branch(raw, original), "input")

        if current_branch:
            return self._found(ParsedIdentifier.branch(current_branch, original), "current branch")

        raise ValueError("No identifier given and none could be detected from the current directory or branch")

    @staticmethod
    def _found(identifier: ParsedIdentifier, source: str) -> ParsedIdentifier:
        logger.debug(f"Resolved '{identifier.original_input}' to {identifier} from {source}")
        return identifier

    def find_worktree(self, identifier: ParsedIdentifier, branch_hint: str = "") -> Optional[Worktree]:
        """Look up the worktree for an identifier using only its own kind's strategy."""
        if self.registry is None:
            raise RuntimeError("IdentifierResolver was created without a WorktreeRegistry")
        if identifier.kind is IdentifierKind.ISSUE:
            return self.registry.find_by_issue_number(identifier.number)
        if identifier.kind is IdentifierKind.PR:
            return self.registry.find_by_pr_number(identifier.number, branch_hint)
        return self.registry.find_by_branch(identifier.branch_name)
