"""Tests for rebase and fast-forward merge"""
from unittest.mock import Mock

import git
import pytest

from conftest import FakeGitRunner, RecordingGitRunner, porcelain
from worktree_keeper.exceptions import (
    ConflictError,
    ExecutionError,
    MergeFailedError,
    NoTrunkWorktreeError,
    NotFastForwardableError,
    TrunkMissingError,
    UncommittedChangesError,
    UnexpectedBranchError,
    ValidationError,
)
from worktree_keeper.models.integration import IntegrationRequest, IntegrationState
from worktree_keeper.services.git.integration import IntegrationEngine
from worktree_keeper.services.git.worktrees import WorktreeRegistry


@pytest.fixture
def recording_runner(git_repo):
    return RecordingGitRunner(git_repo.working_dir)


@pytest.fixture
def engine(recording_runner, settings):
    return IntegrationEngine(recording_runner, WorktreeRegistry(recording_runner), settings)


def head_of(repo, branch):
    return repo.commit(branch).hexsha


def conflicted_runner(conflicts, worktree="/repo_feature"):
    """A runner whose rebase stops with ``conflicts``."""
    runner = FakeGitRunner()
    runner.on("worktree", "list", returns=porcelain(("/repo", "main"), (worktree, "feature")))
    runner.on("branch", "--show-current", returns="feature")
    runner.on("merge-base", returns="base")
    runner.on("rev-parse", "main", returns="trunk")
    runner.on("log", returns="abc123 Add feature")
    runner.on("rebase", raises=ExecutionError("git rebase", "git rebase failed (exit 1): CONFLICT"))
    runner.on("diff", "--name-only", "--diff-filter=U", returns=conflicts)
    return runner


class TestRebaseOntoTrunk:
    """Test rebasing a worktree branch onto trunk."""

    def test_up_to_date_branch_is_noop(self, engine, recording_runner, add_worktree, commit_file):
        path = add_worktree("feat/issue-1", "project_issue-1")
        commit_file(path, "feature.txt", "feature\n", "Add feature")

        outcome = engine.rebase_onto_trunk(str(path))

        assert outcome.success
        assert not outcome.rebase_performed
        assert recording_runner.mutating_calls() == []
        assert engine.state is IntegrationState.COMPLETE

    def test_rebases_onto_advanced_trunk(self, engine, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/issue-2", "project_issue-2")
        commit_file(path, "feature.txt", "feature\n", "Add feature")
        commit_file(git_repo.working_dir, "trunk.txt", "trunk\n", "Advance trunk")

        outcome = engine.rebase_onto_trunk(str(path))

        assert outcome.rebase_performed
        assert outcome.commits_integrated == 1
        assert outcome.branch_name == "feat/issue-2"
        assert git_repo.git.merge_base("main", "feat/issue-2") == head_of(git_repo, "main")
        assert engine.history[-1] is IntegrationState.COMPLETE

    def test_dirty_tree_rejected_even_in_dry_run(self, engine, recording_runner, add_worktree):
        path = add_worktree("feat/issue-3", "project_issue-3")
        (path / "wip.txt").write_text("wip")

        with pytest.raises(UncommittedChangesError) as exc_info:
            engine.rebase_onto_trunk(str(path), dry_run=True)

        assert isinstance(exc_info.value, ValidationError)
        assert recording_runner.mutating_calls() == []
        assert engine.state is IntegrationState.FAILED

    def test_missing_trunk(self, recording_runner, git_repo, add_worktree, settings):
        settings.main_branch = "trunk"
        engine = IntegrationEngine(recording_runner, WorktreeRegistry(recording_runner), settings)
        path = add_worktree("feat/issue-4", "project_issue-4")

        with pytest.raises(TrunkMissingError):
            engine.rebase_onto_trunk(str(path))

    def test_dry_run_does_not_rebase(self, engine, recording_runner, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/issue-5", "project_issue-5")
        commit_file(path, "feature.txt", "feature\n", "Add feature")
        commit_file(git_repo.working_dir, "trunk.txt", "trunk\n", "Advance trunk")
        before = head_of(git_repo, "feat/issue-5")

        outcome = engine.rebase_onto_trunk(str(path), dry_run=True)

        assert not outcome.rebase_performed
        assert outcome.commits_integrated == 1
        assert recording_runner.mutating_calls() == []
        assert head_of(git_repo, "feat/issue-5") == before

    def test_real_conflict_without_agent(self, engine, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/issue-6", "project_issue-6")
        commit_file(path, "README.md", "feature version\n", "Change README on branch")
        commit_file(git_repo.working_dir, "README.md", "trunk version\n", "Change README on trunk")

        with pytest.raises(ConflictError) as exc_info:
            engine.rebase_onto_trunk(str(path))

        assert exc_info.value.conflicted_files == ["README.md"]
        assert IntegrationState.CONFLICT_DETECTED in engine.history
        assert IntegrationState.CONFLICT_UNRESOLVED in engine.history
        assert engine.is_rebase_in_progress(str(path))

        git.Repo(path).git.rebase("--abort")


class TestConflictResolution:
    """Test the single automated conflict resolution attempt."""

    def test_conflict_error_lists_files_and_commands(self, settings):
        runner = conflicted_runner("src/a.ts\nsrc/b.ts\n")
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings, agent=None)

        with pytest.raises(ConflictError) as exc_info:
            engine.rebase_onto_trunk("/repo_feature")

        message = str(exc_info.value)
        assert "src/a.ts" in message
        assert "src/b.ts" in message
        assert "git add src/a.ts src/b.ts" in message
        assert "git rebase --continue" in message
        assert "git rebase --abort" in message

    def test_unavailable_agent_is_not_invoked(self, settings):
        runner = conflicted_runner("src/a.ts")
        agent = Mock()
        agent.is_available.return_value = False
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings, agent=agent)

        with pytest.raises(ConflictError):
            engine.rebase_onto_trunk("/repo_feature")

        agent.invoke.assert_not_called()

    def test_agent_resolves_conflicts(self, settings, temp_dir):
        runner = conflicted_runner(["src/a.ts", ""])
        runner.on("merge-base", returns=["base", "trunk"])
        runner.on("rev-parse", "--git-path", returns=str(temp_dir / "no-rebase-state"))
        agent = Mock()
        agent.is_available.return_value = True
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings, agent=agent)

        outcome = engine.rebase_onto_trunk("/repo_feature")

        assert outcome.rebase_performed
        agent.invoke.assert_called_once()
        prompt, working_directory = agent.invoke.call_args[0][:2]
        assert "git rebase --continue" in prompt
        assert working_directory == "/repo_feature"
        assert agent.invoke.call_args[1] == {"interactive": False}
        assert IntegrationState.CONFLICT_RESOLVED in engine.history
        assert engine.history[-2:] == [IntegrationState.CONFLICT_RESOLVED, IntegrationState.COMPLETE]

    def test_agent_failure_is_caught(self, settings):
        runner = conflicted_runner("src/a.ts")
        agent = Mock()
        agent.is_available.return_value = True
        agent.invoke.side_effect = ExecutionError("conflict_resolution", "claude exited with code 1")
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings, agent=agent)

        with pytest.raises(ConflictError) as exc_info:
            engine.rebase_onto_trunk("/repo_feature")

        assert exc_info.value.conflicted_files == ["src/a.ts"]
        agent.invoke.assert_called_once()

    def test_rebase_still_in_progress_is_unresolved(self, settings, temp_dir):
        state_dir = temp_dir / "rebase-merge"
        state_dir.mkdir()
        runner = conflicted_runner(["src/a.ts", ""])
        runner.on("rev-parse", "--git-path", returns=str(state_dir))
        agent = Mock()
        agent.is_available.return_value = True
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings, agent=agent)

        with pytest.raises(ConflictError) as exc_info:
            engine.rebase_onto_trunk("/repo_feature")

        assert "still in progress" in str(exc_info.value)
        assert engine.history[-2] is IntegrationState.CONFLICT_UNRESOLVED

    def test_agent_aborting_the_rebase_is_unresolved(self, settings, temp_dir):
        runner = conflicted_runner(["src/a.ts", ""])
        runner.on("rev-parse", "--git-path", returns=str(temp_dir / "gone"))
        agent = Mock()
        agent.is_available.return_value = True
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings, agent=agent)

        with pytest.raises(ConflictError) as exc_info:
            engine.rebase_onto_trunk("/repo_feature")

        assert "aborted" in str(exc_info.value)

    def test_failure_without_conflicts_keeps_git_message(self, settings):
        runner = conflicted_runner("")
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings)

        with pytest.raises(ExecutionError) as exc_info:
            engine.rebase_onto_trunk("/repo_feature")

        assert "CONFLICT" in str(exc_info.value)
        assert not isinstance(exc_info.value, ConflictError)


class TestValidateFastForward:
    """Test the fast-forward precondition."""

    @pytest.mark.parametrize("merge_base,trunk_head,possible", [
        ("abc", "abc", True),
        ("abc", "def", False),
    ])
    def test_merge_base_must_equal_trunk(self, settings, merge_base, trunk_head, possible):
        runner = FakeGitRunner().on("merge-base", returns=merge_base).on("rev-parse", returns=trunk_head)
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings)

        if possible:
            engine.validate_fast_forward_possible("feature", "/repo")
        else:
            with pytest.raises(NotFastForwardableError):
                engine.validate_fast_forward_possible("feature", "/repo")

    def test_unrelated_histories(self, settings):
        runner = FakeGitRunner().on("merge-base", raises=ExecutionError("git merge-base", "exit 1"))
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings)

        with pytest.raises(NotFastForwardableError):
            engine.validate_fast_forward_possible("orphan", "/repo")

    def test_real_repository(self, engine, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/ff", "ff")
        commit_file(path, "f.txt", "f\n", "Feature commit")

        engine.validate_fast_forward_possible("feat/ff", git_repo.working_dir)

        commit_file(git_repo.working_dir, "t.txt", "t\n", "Trunk moves")
        with pytest.raises(NotFastForwardableError):
            engine.validate_fast_forward_possible("feat/ff", git_repo.working_dir)


class TestFastForwardMerge:
    """Test merging a branch into trunk."""

    def test_unexpected_branch_on_trunk_worktree(self, settings):
        runner = FakeGitRunner()
        runner.on("worktree", "list", returns=porcelain(("/repo", "main"), ("/repo_feature", "feature")))
        runner.on("branch", "--show-current", returns="feature")
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings)

        with pytest.raises(UnexpectedBranchError):
            engine.perform_fast_forward_merge("feature", "/repo_feature", force=True)

        assert not any(args[0] == "merge" for args in runner.commands())
        assert runner.mutating_calls() == []

    def test_no_worktree_on_trunk(self, settings):
        runner = FakeGitRunner()
        runner.on("worktree", "list", returns=porcelain(("/repo", "develop"), ("/repo_feature", "feature")))
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings)

        with pytest.raises(NoTrunkWorktreeError):
            engine.perform_fast_forward_merge("feature", "/repo_feature")

    def test_merges_from_trunk_worktree(self, engine, recording_runner, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/merge-me", "merge-me")
        feature_head = commit_file(path, "f.txt", "f\n", "Feature commit")

        outcome = engine.perform_fast_forward_merge("feat/merge-me", str(path))

        assert outcome.merge_performed
        assert outcome.commits_integrated == 1
        assert head_of(git_repo, "main") == feature_head
        merge_calls = [(args, cwd) for args, cwd in recording_runner.calls if args[0] == "merge"]
        assert merge_calls == [(["merge", "--ff-only", "feat/merge-me"], git_repo.working_dir)]

    def test_already_merged_is_noop(self, engine, recording_runner, add_worktree):
        path = add_worktree("feat/nothing", "nothing")

        outcome = engine.perform_fast_forward_merge("feat/nothing", str(path))

        assert outcome.success
        assert not outcome.merge_performed
        assert recording_runner.mutating_calls() == []

    def test_dry_run_does_not_merge(self, engine, recording_runner, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/dry", "dry")
        commit_file(path, "f.txt", "f\n", "Feature commit")
        before = head_of(git_repo, "main")

        outcome = engine.perform_fast_forward_merge("feat/dry", str(path), dry_run=True)

        assert not outcome.merge_performed
        assert head_of(git_repo, "main") == before
        assert recording_runner.mutating_calls() == []

    def test_merge_failure(self, settings):
        runner = FakeGitRunner()
        runner.on("worktree", "list", returns=porcelain(("/repo", "main"), ("/repo_feature", "feature")))
        runner.on("branch", "--show-current", returns="main")
        runner.on("merge-base", returns="abc")
        runner.on("rev-parse", returns="abc")
        runner.on("log", returns="def Feature")
        runner.on("merge", raises=ExecutionError("git merge", "fatal: Not possible to fast-forward", stderr="fatal: Not possible to fast-forward"))
        engine = IntegrationEngine(runner, WorktreeRegistry(runner), settings)

        with pytest.raises(MergeFailedError) as exc_info:
            engine.perform_fast_forward_merge("feature", "/repo_feature")

        assert "Not possible to fast-forward" in str(exc_info.value)
        assert engine.state is IntegrationState.FAILED


class TestIntegrate:
    """Test the combined rebase and merge."""

    def test_rebase_then_merge(self, engine, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/issue-9", "project_issue-9")
        commit_file(path, "feature.txt", "feature\n", "Add feature")
        commit_file(git_repo.working_dir, "trunk.txt", "trunk\n", "Advance trunk")

        outcome = engine.integrate(IntegrationRequest(worktree_path=str(path)))

        assert outcome.rebase_performed
        assert outcome.merge_performed
        assert head_of(git_repo, "main") == head_of(git_repo, "feat/issue-9")
        assert engine.history[-1] is IntegrationState.COMPLETE

    def test_dry_run_stops_before_merge_when_rebase_needed(self, engine, recording_runner, git_repo, add_worktree, commit_file):
        path = add_worktree("feat/issue-10", "project_issue-10")
        commit_file(path, "feature.txt", "feature\n", "Add feature")
        commit_file(git_repo.working_dir, "trunk.txt", "trunk\n", "Advance trunk")

        outcome = engine.integrate(IntegrationRequest(worktree_path=str(path), dry_run=True))

        assert not outcome.merge_performed
        assert recording_runner.mutating_calls() == []

    def test_rejects_trunk_worktree(self, engine, git_repo):
        with pytest.raises(ValidationError):
            engine.integrate(IntegrationRequest(worktree_path=git_repo.working_dir))
