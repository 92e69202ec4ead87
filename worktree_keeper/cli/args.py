"""Command-line argument parsing for git-worktree-keeper."""

import argparse
from typing import List, Optional

from worktree_keeper.__version__ import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="worktree-keeper",
        description="Isolated git worktree workspaces per issue, PR or branch",
        epilog="Settings are read from .worktree-keeper/settings.json in the repository root. "
        "Command-line flags take precedence.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("--debug", action="store_true", help="Show debug information for troubleshooting")
    parser.add_argument("--version", action="version", version=f"git-worktree-keeper {__version__}")
    parser.add_argument("--main-branch", default=None, help="Trunk branch name (default: main)")
    parser.add_argument("--protected", nargs="*", default=None, help="Protected branches")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List worktrees")

    create = subparsers.add_parser("create", help="Create a worktree for a branch")
    create.add_argument("branch", help="Branch to create or check out")
    create.add_argument("--base", default=None, help="Start the new branch from this branch")
    create.add_argument("--pr", type=int, default=None, metavar="N", help="Pull request number")
    create.add_argument("--existing", action="store_true", help="Check out an existing branch")
    create.add_argument("--force", action="store_true", help="Replace an existing directory")

    finish = subparsers.add_parser("finish", help="Rebase, fast-forward merge into trunk, and clean up")
    finish.add_argument("identifier", nargs="?", help="Issue number, pr/N, or branch (default: detect)")
    finish.add_argument("--force", action="store_true", help="Skip confirmations and safety checks")
    finish.add_argument("--dry-run", action="store_true", help="Show what would happen")
    finish.add_argument("--keep-branch", action="store_true", help="Do not delete the merged branch")
    finish.add_argument("--keep-database", action="store_true", help="Do not delete the database branch")
    finish.add_argument("--skip-agent", action="store_true", help="Never ask an agent to resolve conflicts")

    cleanup = subparsers.add_parser("cleanup", help="Remove workspaces")
    cleanup.add_argument("identifiers", nargs="+", help="Issue numbers, pr/N, or branches")
    cleanup.add_argument("--force", action="store_true", help="Remove even with uncommitted changes")
    cleanup.add_argument("--dry-run", action="store_true", help="Show what would be removed")
    cleanup.add_argument("--delete-branch", action="store_true", help="Also delete the branch")
    cleanup.add_argument("--keep-database", action="store_true", help="Do not delete the database branch")

    rebase = subparsers.add_parser("rebase", help="Rebase a worktree onto trunk")
    rebase.add_argument("path", nargs="?", default=None, help="Worktree path (default: current directory)")
    rebase.add_argument("--force", action="store_true", help="Skip confirmations")
    rebase.add_argument("--dry-run", action="store_true", help="Show what would happen")
    rebase.add_argument("--skip-agent", action="store_true", help="Never ask an agent to resolve conflicts")

    return parser


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)
