"""Tests for posture/resolver.py command resolution."""

import os
import stat

import pytest

from posture import resolver
from posture.resolver import resolve, windows_to_wsl_path, windows_user_profile
from posture.runner import CommandResult, Outcome


def _script(path, body="#!/bin/sh\nexit 0\n"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.mark.parametrize(
    "windows, expected",
    [
        ("C:\\Users\\dev", "/mnt/c/Users/dev"),
        ("D:/Work/tools\\", "/mnt/d/Work/tools"),
        ("c:\\", "/mnt/c"),
        ("/home/dev", None),
        ("%USERPROFILE%", None),
    ],
)
def test_windows_to_wsl_path(windows, expected):
    assert windows_to_wsl_path(windows) == expected


def test_windows_user_profile_skipped_outside_linux_home(monkeypatch):
    """Verify no cmd.exe round trip when HOME is not a /home/ path."""
    monkeypatch.setenv("HOME", "/Users/dev")
    calls = []
    monkeypatch.setattr(resolver, "run", lambda *a, **kw: calls.append(a))

    assert windows_user_profile() is None
    assert calls == []


def test_resolve_first_working_candidate(tmp_path):
    """Verify strategies are tried in order and the first runnable wins."""
    good = _script(tmp_path / "bin" / "tool")

    found = resolve("tool", strategies=(lambda cmd: [], lambda cmd: [str(good)]))

    assert found == str(good)


def test_resolve_skips_candidates_that_do_not_run(tmp_path):
    """Verify an existing but broken executable is not reported."""
    broken = _script(tmp_path / "broken" / "tool", "#!/bin/sh\nexit 1\n")
    good = _script(tmp_path / "good" / "tool")

    found = resolve("tool", strategies=(lambda cmd: [str(broken)], lambda cmd: [str(good)]))

    assert found == str(good)


def test_resolve_returns_none_when_nothing_runs(tmp_path):
    missing = tmp_path / "nowhere" / "tool"

    assert resolve("tool", strategies=(lambda cmd: [str(missing)],)) is None


def test_resolve_on_path(tmp_path, monkeypatch):
    tool = _script(tmp_path / "bin" / "posture-test-tool")
    monkeypatch.setenv("PATH", f"{tool.parent}{os.pathsep}{os.environ.get('PATH', '')}")

    assert resolve("posture-test-tool") == str(tool)


def test_windows_python_scripts_strategy(tmp_path, monkeypatch):
    """Verify pip-installed Windows scripts are found under the user profile."""
    profile = tmp_path / "Users" / "dev"
    exe = _script(profile / "AppData" / "Roaming" / "Python" / "Python312" / "Scripts" / "pre-commit.exe")
    monkeypatch.setattr(resolver, "windows_user_profile", lambda: str(profile))

    assert list(resolver._windows_python_scripts("pre-commit")) == [str(exe)]


def test_windows_user_profile_via_cmd(monkeypatch):
    monkeypatch.setenv("HOME", "/home/dev")
    monkeypatch.setattr(
        resolver, "run",
        lambda args, **kw: CommandResult(Outcome.OK, stdout="C:\\Users\\dev\r\n"),
    )

    assert windows_user_profile() == "/mnt/c/Users/dev"


def test_windows_user_profile_unexpanded(monkeypatch):
    """Verify a literal %USERPROFILE% echo (no Windows interop) is rejected."""
    monkeypatch.setenv("HOME", "/home/dev")
    monkeypatch.setattr(
        resolver, "run",
        lambda args, **kw: CommandResult(Outcome.OK, stdout="%USERPROFILE%\n"),
    )

    assert windows_user_profile() is None
