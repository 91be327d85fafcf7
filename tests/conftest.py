"""Shared pytest fixtures for posture guard tests."""

import subprocess
from pathlib import Path
from typing import Optional

import pytest

from posture.probe import RepoContext
from posture.stores import ProtectionLookup

ISOLATED_ENV_VARS = (
    "CLAUDE_AGENT_TYPE",
    "CLAUDE_PROJECT_DIR",
    "SSH_SK_PROVIDER",
    "POSTURE_GUARD_DISABLE",
    "POSTURE_GUARD_NO_INSTALL",
    "POSTURE_GUARD_NO_AUDIT",
    "POSTURE_GUARD_GITLEAKS_REV",
    "POSTURE_GUARD_DEBUG",
    "GIT_DIR",
    "GIT_WORK_TREE",
)


@pytest.fixture(autouse=True)
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate HOME, CLAUDE_HOME and git's global config per test."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setenv("CLAUDE_HOME", str(home_dir / ".claude"))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(home_dir / ".gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ISOLATED_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return home_dir


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True)
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path, home: Path) -> Path:
    """Create a temporary git repository with initial commit."""
    repo_dir = tmp_path / "test-repo"
    repo_dir.mkdir()

    git(repo_dir, "init")
    git(repo_dir, "config", "user.email", "test@example.com")
    git(repo_dir, "config", "user.name", "Test User")
    git(repo_dir, "config", "commit.gpgSign", "false")

    readme = repo_dir / "README.md"
    readme.write_text("# Test Repository\n")
    git(repo_dir, "add", "README.md")
    git(repo_dir, "commit", "-m", "Initial commit")

    return repo_dir


@pytest.fixture
def github_repo(git_repo: Path) -> Path:
    """Git repository with a GitHub SSH remote (acme/widgets)."""
    git(git_repo, "remote", "add", "origin", "git@github.com:acme/widgets.git")
    return git_repo


@pytest.fixture
def repo_context(tmp_path: Path) -> RepoContext:
    """Probed context for acme/widgets without touching git."""
    root = tmp_path / "widgets"
    root.mkdir()
    return RepoContext(
        root=root,
        is_repository=True,
        remote_owner="acme",
        remote_name="widgets",
        remote_host="github.com",
        default_branch="main",
        is_compat_layer=False,
    )


class FakeConfigStore:
    """In-memory git config."""

    def __init__(self, values: Optional[dict] = None):
        self.values = dict(values or {})

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)


class FakeHostingAPI:
    """Returns a canned protection lookup and records the queries."""

    def __init__(self, lookup: ProtectionLookup):
        self.lookup = lookup
        self.calls: list[tuple[str, str, str]] = []

    def branch_protection(self, owner: str, repo: str, branch: str) -> ProtectionLookup:
        self.calls.append((owner, repo, branch))
        return self.lookup
