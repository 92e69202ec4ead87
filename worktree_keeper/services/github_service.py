"""GitHub API integration service"""
import os
from typing import Optional, TYPE_CHECKING, Union
from urllib.parse import urlparse

from github import Auth, Github

from worktree_keeper.utils.logging import get_logger

if TYPE_CHECKING:
    from github.Repository import Repository
    from worktree_keeper.config import Settings

logger = get_logger(__name__)


def parse_github_repo(remote_url: str) -> Optional[str]:
    """``org/repo`` from an SSH or HTTPS GitHub remote URL, or None."""
    if "github.com" not in remote_url:
        return None
    if remote_url.startswith("git@"):
        # git@github.com:org/repo.git
        path = remote_url.split("github.com:", 1)[1]
    else:
        # https://github.com/org/repo.git
        path = urlparse(remote_url).path.strip("/")
    if path.endswith(".git"):
        path = path[:-4]
    return path or None


class GitHubService:
    """Looks up pull request head branches.

    Used only to give PR worktree lookups a branch name to match; every
    failure degrades to "no hint".
    """

    def __init__(self, settings: Union['Settings', dict]):
        self.github_token = settings.get("github_token") or os.environ.get("GITHUB_TOKEN")
        self.github_repo: Optional[str] = None
        self.github_enabled = False
        self.github: Optional[Github] = None
        self.gh_repo: Optional['Repository'] = None

    def setup_github_api(self, remote_url: str) -> None:
        """Enable API access for the repository behind ``remote_url``."""
        self.github_repo = parse_github_repo(remote_url)
        if not self.github_repo:
            logger.debug("[GitHub] Not a GitHub repository")
            return
        if not self.github_token:
            logger.debug("[GitHub] No GitHub token found, PR branch lookup disabled")
            return

        try:
            self.github = Github(auth=Auth.Token(self.github_token))
            self.gh_repo = self.github.get_repo(self.github_repo)
            self.github_enabled = True
            logger.debug(f"[GitHub] GitHub integration enabled for: {self.github_repo}")
        except Exception as e:
            logger.debug(f"[GitHub] Failed to setup GitHub API: {e}")
            self.github_enabled = False

    def get_pr_head_branch(self, pr_number: int) -> str:
        """Head branch of a pull request, or "" when unknown."""
        if not self.github_enabled or self.gh_repo is None:
            return ""
        try:
            pull = self.gh_repo.get_pull(pr_number)
            return pull.head.ref
        except Exception as e:
            logger.debug(f"[GitHub] Could not fetch PR #{pr_number}: {e}")
            return ""
