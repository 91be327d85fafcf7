"""Tests for posture/settings.py configuration loading."""

import json

from posture.settings import DEFAULT_GITLEAKS_REV, load_settings, settings_path


def test_defaults(tmp_path):
    settings = load_settings(environ={}, path=tmp_path / "missing.json")

    assert settings.disabled_guards == set()
    assert settings.install_tools
    assert settings.audit_log
    assert not settings.debug
    assert settings.gitleaks_rev == DEFAULT_GITLEAKS_REV
    assert settings.hosting_hosts == ("github.com",)
    assert settings.is_enabled("signing")


def test_settings_path_under_claude_home(home):
    assert settings_path() == home / ".claude" / "security" / "posture-guard.json"


def test_config_file_values(tmp_path):
    """Verify the JSON config file overrides defaults."""
    config = tmp_path / "posture-guard.json"
    config.write_text(json.dumps({
        "disabled_guards": ["branch-protection"],
        "install_tools": False,
        "audit_log": False,
        "gitleaks_rev": "v8.24.0",
        "hosting_hosts": ["GitHub.com", "github.example.com"],
    }))

    settings = load_settings(environ={}, path=config)

    assert not settings.is_enabled("branch-protection")
    assert not settings.install_tools
    assert not settings.audit_log
    assert settings.gitleaks_rev == "v8.24.0"
    assert settings.hosting_hosts == ("github.com", "github.example.com")


def test_environment_wins_over_file(tmp_path):
    config = tmp_path / "posture-guard.json"
    config.write_text(json.dumps({"gitleaks_rev": "v8.24.0", "disabled_guards": "signing"}))

    settings = load_settings(
        environ={
            "POSTURE_GUARD_GITLEAKS_REV": "v8.25.1",
            "POSTURE_GUARD_DISABLE": "pre-commit, branch-protection",
            "POSTURE_GUARD_NO_INSTALL": "1",
            "POSTURE_GUARD_NO_AUDIT": "yes",
            "POSTURE_GUARD_DEBUG": "1",
        },
        path=config,
    )

    assert settings.gitleaks_rev == "v8.25.1"
    assert settings.disabled_guards == {"signing", "pre-commit", "branch-protection"}
    assert not settings.install_tools
    assert not settings.audit_log
    assert settings.debug


def test_unreadable_config_is_ignored(tmp_path):
    """Verify a corrupt config file falls back to defaults."""
    config = tmp_path / "posture-guard.json"
    config.write_text("{not json")

    settings = load_settings(environ={}, path=config)

    assert settings.gitleaks_rev == DEFAULT_GITLEAKS_REV
    assert settings.install_tools
