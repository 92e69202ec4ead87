"""Command-line interface for git-worktree-keeper"""

import os
import sys
from typing import List, Optional

import git
from rich.console import Console
from rich.markup import escape

from worktree_keeper.cli.args import parse_args
from worktree_keeper.config import load_settings
from worktree_keeper.core import WorkspaceKeeper
from worktree_keeper.exceptions import ConflictError, WorktreeKeeperError
from worktree_keeper.utils.logging import setup_logging

console = Console()


def _settings_overrides(parsed_args) -> dict:
    return {
        "main_branch": parsed_args.main_branch,
        "protected_branches": parsed_args.protected,
        "dry_run": getattr(parsed_args, "dry_run", None) or None,
        "force": getattr(parsed_args, "force", None) or None,
        "skip_agent": getattr(parsed_args, "skip_agent", None) or None,
        "verbose": parsed_args.verbose or None,
        "debug": parsed_args.debug or None,
    }


def _repo_root(path: str) -> str:
    """Primary worktree of the repository containing ``path``."""
    repo = git.Repo(path, search_parent_directories=True)
    common_dir = os.path.abspath(repo.common_dir)
    return os.path.dirname(common_dir) if os.path.basename(common_dir) == ".git" else repo.working_tree_dir


def run(parsed_args) -> int:
    cwd = os.getcwd()
    settings = load_settings(_repo_root(cwd), overrides=_settings_overrides(parsed_args))

    if settings.debug:
        console.print("[yellow]Debug mode enabled[/yellow]")
        console.print("[yellow]Settings:[/yellow]")
        for key, value in settings.to_dict().items():
            if key == "github_token" and value:
                value = "***"
            console.print(f"  {key}: {escape(str(value))}")

    keeper = WorkspaceKeeper(cwd, settings)

    if parsed_args.command == "list":
        keeper.list_worktrees()
        return 0

    if parsed_args.command == "create":
        keeper.create_worktree(
            parsed_args.branch,
            base_branch=parsed_args.base,
            pr_number=parsed_args.pr,
            existing=parsed_args.existing,
            force=parsed_args.force,
        )
        return 0

    if parsed_args.command == "rebase":
        outcome = keeper.rebase(parsed_args.path)
        keeper.display_service.display_merge_outcome(outcome)
        return 0

    if parsed_args.command == "finish":
        _, result = keeper.finish(
            parsed_args.identifier,
            keep_branch=parsed_args.keep_branch,
            keep_database=parsed_args.keep_database,
            cwd=cwd,
        )
        return 0 if result.success else 1

    if parsed_args.command == "cleanup":
        results = keeper.cleanup(
            parsed_args.identifiers,
            delete_branch=parsed_args.delete_branch,
            keep_database=parsed_args.keep_database,
        )
        return 0 if all(result.success for result in results) else 1

    console.print(f"[red]Unknown command: {escape(str(parsed_args.command))}[/red]")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    parsed_args = parse_args(argv)
    setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)

    try:
        return run(parsed_args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1
    except ConflictError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 1
    except (WorktreeKeeperError, ValueError, git.exc.InvalidGitRepositoryError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        if parsed_args.debug:
            console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
