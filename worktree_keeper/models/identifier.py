"""Identifier models"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class IdentifierKind(Enum):
    """What a user-supplied identifier refers to."""
    ISSUE = "issue"
    PR = "pr"
    BRANCH = "branch"


@dataclass(frozen=True)
class ParsedIdentifier:
    """A resolved workspace identifier.

    ``number`` is set for issues and pull requests, ``branch_name`` for
    branches. ``original_input`` keeps the raw token for error messages.
    """
    kind: IdentifierKind
    original_input: str
    number: Optional[int] = None
    branch_name: Optional[str] = None

    @classmethod
    def issue(cls, number: int, original_input: str) -> "ParsedIdentifier":
        return cls(IdentifierKind.ISSUE, original_input, number=number)

    @classmethod
    def pr(cls, number: int, original_input: str) -> "ParsedIdentifier":
        return cls(IdentifierKind.PR, original_input, number=number)

    @classmethod
    def branch(cls, name: str, original_input: str) -> "ParsedIdentifier":
        return cls(IdentifierKind.BRANCH, original_input, branch_name=name)

    @property
    def key(self) -> str:
        """Suffix of generated executables: the number, or the branch name."""
        if self.number is not None:
            return str(self.number)
        return self.branch_name or self.original_input

    def __str__(self) -> str:
        if self.kind is IdentifierKind.ISSUE:
            return f"issue #{self.number}"
        if self.kind is IdentifierKind.PR:
            return f"PR #{self.number}"
        return f"branch '{self.branch_name}'"
