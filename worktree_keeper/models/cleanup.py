"""Cleanup models"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class OperationKind(Enum):
    """Resource kinds torn down by a cleanup, in execution order."""
    DEV_SERVER = "dev-server"
    WORKTREE = "worktree"
    BRANCH = "branch"
    CLI_SYMLINKS = "cli-symlinks"
    DATABASE = "database"


@dataclass
class CleanupOptions:
    force: bool = False
    dry_run: bool = False
    delete_branch: bool = False
    keep_database: bool = False


@dataclass
class CleanupOperation:
    """Outcome of one cleanup step."""
    kind: OperationKind
    success: bool
    message: str
    error: Optional[str] = None
    deleted: Optional[bool] = None  # None when the step does not track deletion


@dataclass
class CleanupResult:
    """Ordered record of every cleanup step for one identifier."""
    identifier: str
    operations: List[CleanupOperation] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    branch_name: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.errors

    def record(self, operation: CleanupOperation) -> CleanupOperation:
        self.operations.append(operation)
        return operation

    def fail(self, kind: OperationKind, error: Exception) -> CleanupOperation:
        """Record a failed step and keep the error."""
        self.errors.append(error)
        return self.record(CleanupOperation(kind, False, f"Failed: {error}", error=str(error)))


@dataclass
class SafetyCheck:
    """Blockers stop a cleanup; warnings are only reported."""
    blockers: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_safe(self) -> bool:
        return not self.blockers


class DatabaseDeletionStatus(Enum):
    DELETED = "deleted"
    NOT_FOUND = "not-found"
    USER_DECLINED = "user-declined"
    FAILED = "failed"


@dataclass
class DatabaseDeletionOutcome:
    """Tagged result of a database branch deletion.

    Only ``FAILED`` is an error. ``NOT_FOUND`` and ``USER_DECLINED`` are
    normal outcomes where nothing was removed.
    """
    status: DatabaseDeletionStatus
    branch_name: str
    error: Optional[str] = None

    @classmethod
    def deleted(cls, branch_name: str) -> "DatabaseDeletionOutcome":
        return cls(DatabaseDeletionStatus.DELETED, branch_name)

    @classmethod
    def not_found(cls, branch_name: str) -> "DatabaseDeletionOutcome":
        return cls(DatabaseDeletionStatus.NOT_FOUND, branch_name)

    @classmethod
    def user_declined(cls, branch_name: str) -> "DatabaseDeletionOutcome":
        return cls(DatabaseDeletionStatus.USER_DECLINED, branch_name)

    @classmethod
    def failed(cls, branch_name: str, error: str) -> "DatabaseDeletionOutcome":
        return cls(DatabaseDeletionStatus.FAILED, branch_name, error=error)

    @property
    def is_error(self) -> bool:
        return self.status is DatabaseDeletionStatus.FAILED

    @property
    def was_deleted(self) -> bool:
        return self.status is DatabaseDeletionStatus.DELETED

    def describe(self) -> str:
        if self.status is DatabaseDeletionStatus.DELETED:
            return f"Database branch '{self.branch_name}' deleted"
        if self.status is DatabaseDeletionStatus.NOT_FOUND:
            return f"No database branch '{self.branch_name}' to delete"
        if self.status is DatabaseDeletionStatus.USER_DECLINED:
            return f"Kept database branch '{self.branch_name}' (deletion declined)"
        return f"Failed to delete database branch '{self.branch_name}': {self.error}"
