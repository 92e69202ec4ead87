"""Tests for settings loading and validation"""
import json

import pytest

from worktree_keeper.config import Settings, load_settings, settings_path


def write_settings(root, data):
    path = settings_path(str(root))
    path.parent.mkdir(parents=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data))
    return path


class TestSettingsValidation:
    """Test Settings validation."""

    def test_defaults(self):
        settings = Settings()

        assert settings.main_branch == "main"
        assert settings.protected_branches == ["main", "master", "develop"]
        assert settings.base_port == 3000
        assert settings.database_provider is None
        assert settings.agent_timeout == 1200

    def test_trunk_added_to_protected(self):
        settings = Settings(main_branch="trunk", protected_branches=["release"])

        assert settings.protected_branches == ["release", "trunk"]

    @pytest.mark.parametrize("kwargs", [
        {"main_branch": "  "},
        {"protected_branches": "main"},
        {"base_port": 0},
        {"base_port": 70000},
        {"database_provider": "planetscale"},
        {"database_url_env_var": ""},
        {"agent_timeout": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            Settings(**kwargs)

    def test_from_dict_ignores_unknown_keys(self):
        settings = Settings.from_dict({"main_branch": "develop", "theme": "dark"})

        assert settings.main_branch == "develop"
        assert settings.get("theme") is None
        assert settings.to_dict()["main_branch"] == "develop"


class TestLoadSettings:
    """Test reading settings from disk, environment and overrides."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for var in ("GITHUB_TOKEN", "NEON_PROJECT_ID", "NEON_PARENT_BRANCH"):
            monkeypatch.delenv(var, raising=False)

    def test_no_file(self, temp_dir):
        assert load_settings(str(temp_dir)) == Settings()

    def test_file_values(self, temp_dir):
        write_settings(temp_dir, {"main_branch": "develop", "base_port": 4000, "database_provider": "neon"})

        settings = load_settings(str(temp_dir))

        assert settings.main_branch == "develop"
        assert settings.base_port == 4000
        assert settings.database_provider == "neon"

    def test_invalid_json(self, temp_dir):
        write_settings(temp_dir, "{not json")

        with pytest.raises(ValueError) as exc_info:
            load_settings(str(temp_dir))

        assert "Invalid JSON" in str(exc_info.value)

    def test_json_must_be_object(self, temp_dir):
        write_settings(temp_dir, "[1, 2]")

        with pytest.raises(ValueError):
            load_settings(str(temp_dir))

    def test_environment_fallbacks(self, temp_dir, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")
        monkeypatch.setenv("NEON_PROJECT_ID", "proj-env")
        write_settings(temp_dir, {"neon_project_id": "proj-file"})

        settings = load_settings(str(temp_dir))

        assert settings.github_token == "ghp_env"
        assert settings.neon_project_id == "proj-file"

    def test_overrides_win(self, temp_dir):
        write_settings(temp_dir, {"main_branch": "develop", "verbose": True})

        settings = load_settings(str(temp_dir), {"main_branch": "main", "verbose": None, "dry_run": True})

        assert settings.main_branch == "main"
        assert settings.verbose is True
        assert settings.dry_run is True
