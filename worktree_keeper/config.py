"""Configuration handling for git-worktree-keeper"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import List, Optional

SETTINGS_DIR = ".worktree-keeper"
SETTINGS_FILE = "settings.json"

SUPPORTED_DATABASE_PROVIDERS = ["neon"]


def default_bin_dir() -> str:
    """Directory where generated per-workspace executables are linked."""
    return str(Path.home() / ".worktree-keeper" / "bin")


@dataclass
class Settings:
    """Settings for git-worktree-keeper with validation.

    Settings are passed explicitly into every service constructor; nothing
    reads them from global state.
    """

    # Branches
    main_branch: str = "main"
    protected_branches: List[str] = field(default_factory=lambda: ["main", "master", "develop"])

    # Workspace layout
    worktree_root: Optional[str] = None  # None = sibling directories of the primary worktree
    bin_dir: str = field(default_factory=default_bin_dir)

    # Dev server
    base_port: int = 3000

    # Database branching
    database_provider: Optional[str] = None  # None disables database branching
    database_url_env_var: str = "DATABASE_URL"
    neon_project_id: Optional[str] = None
    neon_parent_branch: Optional[str] = None

    # Conflict resolution agent
    skip_agent: bool = False
    agent_timeout: int = 1200  # seconds

    # Execution modes
    dry_run: bool = False
    force: bool = False
    verbose: bool = False
    debug: bool = False

    # GitHub integration
    github_token: Optional[str] = None

    def __post_init__(self):
        """Validate settings after initialization."""
        self._validate_main_branch()
        self._validate_protected_branches()
        self._validate_base_port()
        self._validate_database_provider()
        self._validate_database_url_env_var()
        self._validate_agent_timeout()

    def _validate_main_branch(self):
        """Validate main_branch is not empty."""
        if not self.main_branch or not self.main_branch.strip():
            raise ValueError("main_branch cannot be empty")
        self.main_branch = self.main_branch.strip()

    def _validate_protected_branches(self):
        """Validate protected_branches list."""
        if not isinstance(self.protected_branches, list):
            raise ValueError("protected_branches must be a list")

        # The trunk branch is always protected
        if self.main_branch not in self.protected_branches:
            self.protected_branches.append(self.main_branch)

    def _validate_base_port(self):
        """Validate base_port is a usable TCP port."""
        if not isinstance(self.base_port, int) or not 1 <= self.base_port <= 65535:
            raise ValueError(f"base_port must be between 1 and 65535, got {self.base_port}")

    def _validate_database_provider(self):
        """Validate database_provider is supported."""
        if self.database_provider is not None and self.database_provider not in SUPPORTED_DATABASE_PROVIDERS:
            raise ValueError(
                f"database_provider must be one of {SUPPORTED_DATABASE_PROVIDERS}, "
                f"got '{self.database_provider}'"
            )

    def _validate_database_url_env_var(self):
        """Validate database_url_env_var is not empty."""
        if not self.database_url_env_var or not self.database_url_env_var.strip():
            raise ValueError("database_url_env_var cannot be empty")

    def _validate_agent_timeout(self):
        """Validate agent_timeout is positive."""
        if self.agent_timeout <= 0:
            raise ValueError(f"agent_timeout must be positive, got {self.agent_timeout}")

    def to_dict(self) -> dict:
        """Convert settings to a dictionary."""
        return asdict(self)

    def get(self, key: str, default=None):
        """Get a setting by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, settings_dict: dict) -> "Settings":
        """Create Settings from a dictionary, ignoring unknown keys."""
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in settings_dict.items() if k in known_fields}
        return cls(**filtered)


def settings_path(project_root: str) -> Path:
    """Location of the per-repository settings file."""
    return Path(project_root) / SETTINGS_DIR / SETTINGS_FILE


def load_settings(project_root: str, overrides: Optional[dict] = None) -> Settings:
    """Load settings for a repository.

    Values come from ``<root>/.worktree-keeper/settings.json``, then from the
    environment for values still unset, then from ``overrides`` (usually the
    CLI flags), which always win.

    Args:
        project_root: Path to the primary worktree
        overrides: Values that take precedence over the settings file

    Returns:
        Validated Settings

    Raises:
        ValueError: If the settings file is not valid JSON or not an object
    """
    path = settings_path(project_root)
    values: dict = {}

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in settings file {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ValueError(f"Settings file {path} must contain a JSON object")
        values.update(loaded)

    env_fallbacks = {
        "github_token": "GITHUB_TOKEN",
        "neon_project_id": "NEON_PROJECT_ID",
        "neon_parent_branch": "NEON_PARENT_BRANCH",
    }
    for key, env_var in env_fallbacks.items():
        if not values.get(key) and os.environ.get(env_var):
            values[key] = os.environ[env_var]

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    return Settings.from_dict(values)
