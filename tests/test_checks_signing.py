"""Tests for the commit signing rules in posture/checks.py."""

import dataclasses

import pytest

from conftest import FakeConfigStore
from posture.checks import GuardStatus, describe_signing_key, evaluate_signing

SIGNING_CHECKS = [
    "Signing format",
    "Signing key",
    "Auto-sign commits",
    "Auto-sign tags",
    "Key file exists",
    "Allowed signers file",
]


@pytest.fixture
def ssh_dir(home):
    path = home / ".ssh"
    path.mkdir()
    return path


@pytest.fixture
def hardware_key(ssh_dir):
    key = ssh_dir / "id_ed25519_sk_git_signing.pub"
    key.write_text("sk-ssh-ed25519@openssh.com AAAA test@example.com\n")
    (ssh_dir / "allowed_signers").write_text("test@example.com namespaces=\"git\" sk-ssh-ed25519@openssh.com AAAA\n")
    return key


def _complete_config(**overrides):
    values = {
        "gpg.format": "ssh",
        "user.signingkey": "~/.ssh/id_ed25519_sk_git_signing.pub",
        "commit.gpgSign": "true",
        "tag.forceSignAnnotated": "true",
        "gpg.ssh.allowedSignersFile": "~/.ssh/allowed_signers",
    }
    values.update(overrides)
    return FakeConfigStore({k: v for k, v in values.items() if v is not None})


# ==============================================================================
# Key classification
# ==============================================================================

@pytest.mark.parametrize(
    "key, hardware, label",
    [
        ("~/.ssh/id_ed25519_sk.pub", True, "ed25519-sk (FIDO2, hardware-backed)"),
        ("~/.ssh/id_ecdsa_sk", True, "ecdsa-sk (FIDO2, hardware-backed)"),
        ("~/.ssh/id_ed25519-sk-work.pub", True, "ed25519-sk (FIDO2, hardware-backed)"),
        ("~/.ssh/id_ed25519.pub", False, "ed25519 (software key)"),
        ("~/.ssh/id_ecdsa.pub", False, "ecdsa (software key)"),
        ("~/.ssh/id_rsa.pub", False, "rsa (software key)"),
        ("~/.ssh/signing.pub", False, "unknown"),
        ("key::sk-ssh-ed25519@openssh.com AAAA", True, "ed25519-sk (FIDO2, hardware-backed)"),
        ("key::ssh-ed25519 AAAA", False, "ssh-ed25519 (software key)"),
    ],
)
def test_describe_signing_key(key, hardware, label):
    descriptor = describe_signing_key(key)

    assert descriptor.is_hardware_backed is hardware
    assert descriptor.algorithm_label == label


# ==============================================================================
# evaluate_signing
# ==============================================================================

def test_all_checks_pass(repo_context, hardware_key):
    report = evaluate_signing(repo_context, _complete_config(), environ={})

    assert [c.name for c in report.checks] == SIGNING_CHECKS
    assert report.status is GuardStatus.OK
    assert report.gaps == []
    assert "hardware-backed" in report.summary_ok


def test_only_commit_signing_missing(repo_context, hardware_key):
    """Hardware key in place but commit.gpgSign unset: exactly one gap."""
    report = evaluate_signing(repo_context, _complete_config(**{"commit.gpgSign": None}), environ={})

    assert [gap.name for gap in report.gaps] == ["Auto-sign commits"]
    assert report.gaps[0].fix == "git config --global commit.gpgSign true"
    assert report.status is GuardStatus.GAPS


def test_nothing_configured(repo_context):
    """Verify an empty git config reports every gap with a fix, skipping the key file check."""
    report = evaluate_signing(repo_context, FakeConfigStore(), environ={})

    names = [c.name for c in report.checks]
    assert "Key file exists" not in names
    assert all(not c.passed for c in report.checks)
    assert all(c.fix for c in report.checks)
    by_name = {c.name: c for c in report.checks}
    assert by_name["Signing format"].fix == "git config --global gpg.format ssh"
    assert "ssh-keygen -t ed25519-sk -O resident -O verify-required" in by_name["Signing key"].fix
    assert by_name["Allowed signers file"].fix == "git config --global gpg.ssh.allowedSignersFile ~/.ssh/allowed_signers"


def test_software_key_is_a_gap(repo_context, ssh_dir):
    (ssh_dir / "id_ed25519.pub").write_text("ssh-ed25519 AAAA\n")
    (ssh_dir / "allowed_signers").write_text("x\n")
    store = _complete_config(**{"user.signingkey": "~/.ssh/id_ed25519.pub"})

    report = evaluate_signing(repo_context, store, environ={})

    gap = {c.name: c for c in report.gaps}["Signing key"]
    assert "software key" in gap.detail
    assert gap.fix.startswith("Current key is software-only")


@pytest.mark.parametrize("value", ["yes", "on", "1", "TRUE"])
def test_boolean_spellings(repo_context, hardware_key, value):
    store = _complete_config(**{"commit.gpgSign": value, "tag.forceSignAnnotated": value})

    assert evaluate_signing(repo_context, store, environ={}).status is GuardStatus.OK


def test_missing_hardware_key_file(repo_context, ssh_dir):
    """Verify a missing FIDO2 key handle suggests downloading resident keys."""
    (ssh_dir / "allowed_signers").write_text("x\n")

    report = evaluate_signing(repo_context, _complete_config(), environ={})

    gap = {c.name: c for c in report.gaps}["Key file exists"]
    assert gap.fix.startswith("ssh-keygen -K")


def test_private_key_only_counts(repo_context, ssh_dir):
    (ssh_dir / "id_ed25519_sk_git_signing").write_text("private\n")
    (ssh_dir / "allowed_signers").write_text("x\n")

    report = evaluate_signing(repo_context, _complete_config(), environ={})

    assert report.status is GuardStatus.OK


def test_inline_key_needs_no_file(repo_context, ssh_dir):
    (ssh_dir / "allowed_signers").write_text("x\n")
    store = _complete_config(**{"user.signingkey": "key::sk-ssh-ed25519@openssh.com AAAA"})

    report = evaluate_signing(repo_context, store, environ={})

    assert {c.name: c for c in report.checks}["Key file exists"].passed


def test_allowed_signers_configured_but_missing(repo_context, hardware_key):
    (hardware_key.parent / "allowed_signers").unlink()

    report = evaluate_signing(repo_context, _complete_config(), environ={})

    gap = {c.name: c for c in report.gaps}["Allowed signers file"]
    assert "not found" in gap.detail
    assert "id_ed25519_sk_git_signing.pub" in gap.fix
    assert gap.fix.endswith(str(hardware_key.parent / "allowed_signers"))


# ==============================================================================
# WSL2 FIDO2 bridge
# ==============================================================================

def test_bridge_check_only_on_compat_layer(repo_context, hardware_key):
    report = evaluate_signing(repo_context, _complete_config(), environ={})

    assert "WSL2 FIDO2 bridge" not in [c.name for c in report.checks]


def test_bridge_missing_on_compat_layer(repo_context, hardware_key):
    wsl = dataclasses.replace(repo_context, is_compat_layer=True)

    report = evaluate_signing(wsl, _complete_config(), environ={})

    gap = {c.name: c for c in report.gaps}["WSL2 FIDO2 bridge"]
    assert "SSH_SK_PROVIDER" in gap.fix
    assert "ssh-keygen.exe" in gap.fix


def test_bridge_via_sk_provider(repo_context, hardware_key):
    wsl = dataclasses.replace(repo_context, is_compat_layer=True)

    report = evaluate_signing(wsl, _complete_config(), environ={"SSH_SK_PROVIDER": "/usr/lib/libsk.so"})

    assert report.status is GuardStatus.OK


def test_bridge_via_windows_ssh_program(repo_context, hardware_key):
    wsl = dataclasses.replace(repo_context, is_compat_layer=True)
    store = _complete_config(**{"gpg.ssh.program": "/mnt/c/Windows/System32/OpenSSH/ssh-keygen.exe"})

    report = evaluate_signing(wsl, store, environ={})

    assert report.status is GuardStatus.OK
    assert len(report.checks) == 7
