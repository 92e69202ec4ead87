"""Pytest fixtures for git-worktree-keeper tests"""
import tempfile
from pathlib import Path
from unittest.mock import Mock

import git
import pytest

from worktree_keeper.config import Settings
from worktree_keeper.exceptions import ExecutionError
from worktree_keeper.services.git.runner import GitRunner


def is_mutating(args) -> bool:
    """Whether a git invocation changes the repository."""
    if not args:
        return False
    command = args[0]
    if command in ("rebase", "merge", "reset", "checkout", "commit", "push", "cherry-pick"):
        return True
    if command == "branch":
        return any(flag in ("-d", "-D", "-m", "-M", "--delete") for flag in args[1:])
    if command == "worktree":
        return len(args) > 1 and args[1] in ("add", "remove", "prune", "lock", "unlock", "move")
    return False


class FakeGitRunner:
    """Scripted stand-in for GitRunner that records every call.

    Responses are matched by argument prefix (and optionally cwd); the most
    recently registered match wins. A list of results is consumed one per
    call, the last one repeating.
    """

    def __init__(self, repo_path: str = "/repo"):
        self.repo_path = repo_path
        self.calls = []
        self._responses = []

    def on(self, *prefix, returns="", raises=None, cwd=None):
        results = list(returns) if isinstance(returns, list) else [returns]
        self._responses.insert(0, {"prefix": tuple(prefix), "results": results, "raises": raises, "cwd": cwd})
        return self

    def run(self, args, cwd=None):
        args = list(args)
        self.calls.append((args, cwd))
        for response in self._responses:
            prefix = response["prefix"]
            if tuple(args[:len(prefix)]) != prefix:
                continue
            if response["cwd"] is not None and response["cwd"] != cwd:
                continue
            if response["raises"] is not None:
                raise response["raises"]
            results = response["results"]
            return results.pop(0) if len(results) > 1 else results[0]
        return ""

    def succeeds(self, args, cwd=None):
        try:
            self.run(args, cwd=cwd)
            return True
        except ExecutionError:
            return False

    def commands(self):
        return [args for args, _ in self.calls]

    def mutating_calls(self):
        return [args for args, _ in self.calls if is_mutating(args)]


class RecordingGitRunner(GitRunner):
    """Real GitRunner that also records what it ran."""

    def __init__(self, repo_path: str):
        super().__init__(repo_path)
        self.calls = []

    def run(self, args, cwd=None):
        self.calls.append((list(args), cwd))
        return super().run(args, cwd=cwd)

    def commands(self):
        return [args for args, _ in self.calls]

    def mutating_calls(self):
        return [args for args, _ in self.calls if is_mutating(args)]


def porcelain(*entries) -> str:
    """``git worktree list --porcelain`` output for (path, branch[, sha]) tuples.

    A branch of None produces a detached entry.
    """
    records = []
    for entry in entries:
        path, branch = entry[0], entry[1]
        sha = entry[2] if len(entry) > 2 else "0" * 40
        lines = [f"worktree {path}", f"HEAD {sha}"]
        lines.append(f"branch refs/heads/{branch}" if branch is not None else "detached")
        records.append("\n".join(lines))
    return "\n\n".join(records) + "\n"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def mock_config(temp_dir):
    """Create a settings dictionary."""
    return {
        'verbose': False,
        'debug': False,
        'main_branch': 'main',
        'protected_branches': ['main', 'master', 'develop'],
        'dry_run': False,
        'force': False,
        'skip_agent': True,
        'base_port': 3000,
        'bin_dir': str(temp_dir / "bin"),
        'github_token': None,
    }


@pytest.fixture
def settings(mock_config):
    return Settings.from_dict(mock_config)


@pytest.fixture
def fake_runner():
    return FakeGitRunner()


@pytest.fixture
def git_repo(temp_dir):
    """Create a real Git repository for testing."""
    repo_path = temp_dir / "project"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)

    # Configure git user for commits
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    test_file = repo_path / "README.md"
    test_file.write_text("# Test Repository\n")
    ignore_file = repo_path / ".gitignore"
    ignore_file.write_text(".env\n")
    repo.index.add(["README.md", ".gitignore"])
    repo.index.commit("Initial commit")

    repo.git.branch('-M', 'main')

    yield repo

    repo.close()


def _commit(path, filename: str, content: str, message: str) -> str:
    worktree_repo = git.Repo(path)
    try:
        (Path(path) / filename).parent.mkdir(parents=True, exist_ok=True)
        (Path(path) / filename).write_text(content)
        worktree_repo.index.add([filename])
        return worktree_repo.index.commit(message).hexsha
    finally:
        worktree_repo.close()


@pytest.fixture
def commit_file():
    """Commit a file in any worktree: ``commit_file(path, name, content, message)``."""
    return _commit


@pytest.fixture
def add_worktree(git_repo, temp_dir):
    """Create a linked worktree on a new branch: ``add_worktree(branch, dirname)``."""

    def _add(branch: str, dirname: str, base: str = "main") -> Path:
        path = temp_dir / dirname
        git_repo.git.worktree("add", "-b", branch, str(path), base)
        return path

    return _add


@pytest.fixture
def process_manager():
    """Process lifecycle that never finds anything on a port."""
    manager = Mock()
    manager.detect_listener_on_port.return_value = None
    manager.verify_port_free.return_value = True
    return manager
