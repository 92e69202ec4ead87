"""Display and formatting service for worktrees and cleanup results"""
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from worktree_keeper.models.cleanup import CleanupResult
from worktree_keeper.models.integration import MergeOutcome
from worktree_keeper.models.worktree import Worktree, WorktreeStatus
from worktree_keeper.utils.logging import get_logger

console = Console()
logger = get_logger(__name__)


def format_status(status: Optional[WorktreeStatus]) -> str:
    if status is None:
        return "[dim]?[/dim]"
    if status.is_clean:
        return "[green]clean[/green]"
    parts = []
    if status.modified:
        parts.append(f"+M{status.modified}")
    if status.staged:
        parts.append(f"+S{status.staged}")
    if status.deleted:
        parts.append(f"-D{status.deleted}")
    if status.untracked:
        parts.append(f"+U{status.untracked}")
    return f"[yellow]{' '.join(parts)}[/yellow]"


class DisplayService:
    def __init__(self, verbose: bool = False, debug: bool = False):
        self.verbose = verbose
        self.debug_mode = debug

    def display_worktree_table(
            self,
            worktrees: List[Worktree],
            statuses: Dict[str, Optional[WorktreeStatus]],
            protected_branches: List[str],
        ) -> None:
        """Display a table of worktrees."""
        table = Table()
        for label in ("Branch", "Path", "Commit", "Changes", "Notes"):
            table.add_column(label)

        for worktree in worktrees:
            notes = []
            if worktree.is_primary:
                notes.append("primary")
            if worktree.locked:
                notes.append(f"locked: {escape(worktree.lock_reason)}" if worktree.lock_reason else "locked")
            if worktree.bare:
                notes.append("bare")

            row_style = "cyan" if worktree.branch in protected_branches else None
            table.add_row(
                escape(worktree.branch) if worktree.branch else "[dim](detached)[/dim]",
                escape(worktree.path),
                worktree.commit_hash[:7],
                format_status(statuses.get(worktree.path)),
                ", ".join(notes),
                style=row_style,
            )

        console.print(table)

    def display_cleanup_result(self, result: CleanupResult) -> None:
        """Print one line per cleanup step."""
        header_style = "green" if result.success else "red"
        console.print(f"\n[{header_style}]Cleanup of {escape(result.identifier)}[/{header_style}]")
        for operation in result.operations:
            marker = "[green]✓[/green]" if operation.success else "[red]✗[/red]"
            console.print(f"  {marker} {operation.kind.value}: {escape(operation.message)}")
        for error in result.errors:
            if not any(op.error == str(error) for op in result.operations):
                console.print(f"  [red]✗ {escape(str(error))}[/red]")

    def display_merge_outcome(self, outcome: MergeOutcome) -> None:
        if outcome.merge_performed:
            console.print(
                f"[green]Merged {outcome.commits_integrated} commit(s) from {escape(outcome.branch_name)}[/green]"
            )
        elif outcome.rebase_performed:
            console.print(f"[green]Rebased {escape(outcome.branch_name)}[/green]")
        else:
            console.print(f"[dim]{escape(outcome.branch_name)}: nothing to integrate[/dim]")
