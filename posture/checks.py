"""
Rule Evaluator - turn probed state into ordered pass/fail check lists.

One stateless function per guard:

    evaluate_signing(ctx, store, environ)      hardware-backed commit signing
    evaluate_branch_protection(ctx, api)       default branch protection
    evaluate_precommit(text)                   secret-scanning hook config

Every declared check yields exactly one CheckResult. A failing check
carries a literal remediation in `fix` when one is known; otherwise `fix`
is None and `detail` says why.
"""

import json
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from hooks.compat import expand_home
from posture.precommit_config import (
    CONFIG_FILENAME,
    HookConfigDocument,
    gitleaks_block,
    hook_block_has_property,
    trufflehog_block,
)
from posture.probe import RepoContext
from posture.stores import BranchProtectionState, ConfigStore, HostingAPI, ProtectionLookup

_TRUE_VALUES = {"true", "yes", "on", "1"}

SUGGESTED_KEY_PATH = "~/.ssh/id_ed25519_sk_git_signing"
DEFAULT_ALLOWED_SIGNERS = "~/.ssh/allowed_signers"
WINDOWS_SSH_KEYGEN = "/mnt/c/Windows/System32/OpenSSH/ssh-keygen.exe"
FIDO_BRIDGE_PROVIDER = "/usr/lib/windows-fido-bridge/libnativemessaging.so"

_INLINE_KEY_PREFIX = "key::"


class GuardStatus(Enum):
    OK = "ok"
    GAPS = "gaps"
    INDETERMINATE = "indeterminate"
    SKIPPED = "skipped"


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str
    fix: Optional[str] = None


@dataclass
class GuardReport:
    guard: str
    title: str
    checks: list[CheckResult] = field(default_factory=list)
    subject: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    indeterminate: Optional[str] = None
    skipped: Optional[str] = None
    summary_ok: Optional[str] = None

    @property
    def gaps(self) -> list[CheckResult]:
        return [check for check in self.checks if not check.passed]

    @property
    def passing(self) -> list[CheckResult]:
        return [check for check in self.checks if check.passed]

    @property
    def status(self) -> GuardStatus:
        if self.skipped is not None:
            return GuardStatus.SKIPPED
        if self.indeterminate is not None:
            return GuardStatus.INDETERMINATE
        return GuardStatus.GAPS if self.gaps else GuardStatus.OK


def is_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUE_VALUES


# =============================================================================
# Commit signing
# =============================================================================

@dataclass(frozen=True)
class SigningKeyDescriptor:
    path: str
    is_hardware_backed: bool
    algorithm_label: str

    @property
    def is_inline(self) -> bool:
        return self.path.startswith(_INLINE_KEY_PREFIX)


def describe_signing_key(signing_key: str) -> SigningKeyDescriptor:
    """
    Classify a user.signingkey value by naming convention only.

    FIDO2 resident keys carry "_sk" in the filename (id_ed25519_sk,
    id_ecdsa_sk). Inline "key::" values are classified by their key type
    (sk-ssh-ed25519@openssh.com, sk-ecdsa-sha2-nistp256@openssh.com).
    """
    if signing_key.startswith(_INLINE_KEY_PREFIX):
        key_type = signing_key[len(_INLINE_KEY_PREFIX):].strip().split(" ", 1)[0]
        if key_type.startswith("sk-ssh-ed25519"):
            return SigningKeyDescriptor(signing_key, True, "ed25519-sk (FIDO2, hardware-backed)")
        if key_type.startswith("sk-ecdsa"):
            return SigningKeyDescriptor(signing_key, True, "ecdsa-sk (FIDO2, hardware-backed)")
        return SigningKeyDescriptor(signing_key, False, f"{key_type or 'unknown'} (software key)")

    name = Path(signing_key).name.lower()
    if re.search(r"ed25519[_-]sk", name):
        return SigningKeyDescriptor(signing_key, True, "ed25519-sk (FIDO2, hardware-backed)")
    if re.search(r"ecdsa[_-]sk", name):
        return SigningKeyDescriptor(signing_key, True, "ecdsa-sk (FIDO2, hardware-backed)")
    if "_sk" in name:
        return SigningKeyDescriptor(signing_key, True, "unknown (FIDO2, hardware-backed)")
    if "ed25519" in name:
        return SigningKeyDescriptor(signing_key, False, "ed25519 (software key)")
    if "ecdsa" in name:
        return SigningKeyDescriptor(signing_key, False, "ecdsa (software key)")
    if "rsa" in name:
        return SigningKeyDescriptor(signing_key, False, "rsa (software key)")
    return SigningKeyDescriptor(signing_key, False, "unknown")


def _key_file_check(descriptor: SigningKeyDescriptor) -> CheckResult:
    if descriptor.is_inline:
        return CheckResult("Key file exists", True, "Inline key (key::) configured, no file needed")

    key_path = descriptor.path[:-4] if descriptor.path.endswith(".pub") else descriptor.path
    private_path = expand_home(key_path)
    public_path = expand_home(f"{key_path}.pub")
    pub_exists = os.path.exists(public_path)
    key_exists = os.path.exists(private_path)

    if pub_exists or key_exists:
        return CheckResult("Key file exists", True, f"Found at {public_path if pub_exists else private_path}")
    if descriptor.is_hardware_backed:
        return CheckResult(
            "Key file exists", False, f"Not found: {public_path}",
            fix="ssh-keygen -K  # Download resident key handles from the security key",
        )
    return CheckResult(
        "Key file exists", False,
        f"Not found: {public_path} (software key; restore it from backup or generate a new FIDO2 key)",
    )


def evaluate_signing(
    ctx: RepoContext,
    store: ConfigStore,
    environ: Optional[Mapping[str, str]] = None,
) -> GuardReport:
    """Evaluate the hardware-backed commit signing checks."""
    env = os.environ if environ is None else environ
    report = GuardReport(guard="signing", title="Commit signing")

    # 1. gpg.format == ssh
    gpg_format = store.get("gpg.format")
    report.checks.append(CheckResult(
        "Signing format",
        gpg_format == "ssh",
        f"gpg.format = {gpg_format}" if gpg_format else "gpg.format not set",
        fix=None if gpg_format == "ssh" else "git config --global gpg.format ssh",
    ))

    # 2. user.signingkey is a hardware-backed key
    signing_key = store.get("user.signingkey")
    descriptor = describe_signing_key(signing_key) if signing_key else None
    if descriptor is None:
        report.checks.append(CheckResult(
            "Signing key", False, "No signing key configured",
            fix=(
                "ssh-keygen -t ed25519-sk -O resident -O verify-required "
                f'-C "git-signing $(git config user.email)" -f {SUGGESTED_KEY_PATH} '
                f"&& git config --global user.signingkey {SUGGESTED_KEY_PATH}.pub"
            ),
        ))
    elif not descriptor.is_hardware_backed:
        report.checks.append(CheckResult(
            "Signing key", False, f"{signing_key} ({descriptor.algorithm_label})",
            fix=(
                "Current key is software-only. Generate a FIDO2 hardware key: "
                f"ssh-keygen -t ed25519-sk -O resident -O verify-required -f {SUGGESTED_KEY_PATH}"
            ),
        ))
    else:
        report.checks.append(CheckResult("Signing key", True, f"{signing_key} ({descriptor.algorithm_label})"))

    # 3. commit.gpgSign
    commit_sign = is_true(store.get("commit.gpgSign"))
    report.checks.append(CheckResult(
        "Auto-sign commits", commit_sign, "Enabled" if commit_sign else "Disabled",
        fix=None if commit_sign else "git config --global commit.gpgSign true",
    ))

    # 4. tag.forceSignAnnotated
    tag_sign = is_true(store.get("tag.forceSignAnnotated"))
    report.checks.append(CheckResult(
        "Auto-sign tags", tag_sign, "Enabled" if tag_sign else "Disabled",
        fix=None if tag_sign else "git config --global tag.forceSignAnnotated true",
    ))

    # 5. key file on disk (only with a configured key)
    if descriptor is not None:
        report.checks.append(_key_file_check(descriptor))

    # 6. allowed signers file
    allowed_signers = store.get("gpg.ssh.allowedSignersFile")
    if allowed_signers:
        expanded = expand_home(allowed_signers)
        if os.path.exists(expanded):
            report.checks.append(CheckResult("Allowed signers file", True, f"{expanded} exists"))
        else:
            public_key = signing_key if signing_key and not signing_key.startswith(_INLINE_KEY_PREFIX) \
                else f"{SUGGESTED_KEY_PATH}.pub"
            if not public_key.endswith(".pub"):
                public_key = f"{public_key}.pub"
            report.checks.append(CheckResult(
                "Allowed signers file", False, f"{expanded} not found",
                fix=f'echo "$(git config user.email) namespaces=\\"git\\" $(cat {public_key})" >> {expanded}',
            ))
    else:
        report.checks.append(CheckResult(
            "Allowed signers file", False, "gpg.ssh.allowedSignersFile not set",
            fix=f"git config --global gpg.ssh.allowedSignersFile {DEFAULT_ALLOWED_SIGNERS}",
        ))

    # 7. WSL FIDO2 bridge
    if ctx.is_compat_layer:
        sk_provider = env.get("SSH_SK_PROVIDER")
        ssh_program = store.get("gpg.ssh.program")
        if sk_provider:
            report.checks.append(CheckResult("WSL2 FIDO2 bridge", True, f"SSH_SK_PROVIDER={sk_provider}"))
        elif ssh_program and "windows" in ssh_program.lower():
            report.checks.append(CheckResult("WSL2 FIDO2 bridge", True, f"gpg.ssh.program={ssh_program}"))
        else:
            report.checks.append(CheckResult(
                "WSL2 FIDO2 bridge", False, "No WSL2 FIDO2 bridge detected",
                fix=(
                    f"Option A: export SSH_SK_PROVIDER={FIDO_BRIDGE_PROVIDER}\n"
                    f'Option B: git config --global gpg.ssh.program "{WINDOWS_SSH_KEYGEN}"'
                ),
            ))

    if descriptor is not None and descriptor.is_hardware_backed:
        report.summary_ok = f"All {len(report.checks)} checks passing (hardware-backed {descriptor.algorithm_label})"
    else:
        report.summary_ok = f"All {len(report.checks)} checks passing"
    return report


# =============================================================================
# Branch protection
# =============================================================================

def _protection_endpoint(ctx: RepoContext) -> str:
    return f"repos/{ctx.slug}/branches/{ctx.default_branch}/protection"


def evaluate_branch_protection(ctx: RepoContext, api: HostingAPI) -> GuardReport:
    """Query and evaluate protection of the repository's default branch."""
    lookup = api.branch_protection(ctx.remote_owner, ctx.remote_name, ctx.default_branch)
    return evaluate_protection_lookup(ctx, lookup)


def evaluate_protection_lookup(ctx: RepoContext, lookup: ProtectionLookup) -> GuardReport:
    """
    Evaluate default-branch protection from a hosting query result.

    "Not found" means the branch is unprotected (every control fails).
    Any other query error makes the report indeterminate with no checks;
    gaps are never synthesized from an error.
    """
    subject = f"{ctx.slug}:{ctx.default_branch}"
    report = GuardReport(guard="branch-protection", title="Branch protection", subject=subject)

    if lookup.indeterminate:
        report.indeterminate = f"Could not query branch protection for {subject}: {lookup.error}"
        return report

    state = lookup.state if lookup.state is not None else BranchProtectionState.unprotected()
    endpoint = _protection_endpoint(ctx)
    payload = state.hardened_payload()
    if payload is None:
        host = ctx.remote_host or "github.com"
        protect_cmd = (
            f"Block force pushes and deletion in https://{host}/{ctx.slug}/settings/branches "
            "(push restrictions are set; a PUT from here would drop them)"
        )
    else:
        protect_cmd = (
            f"gh api {endpoint} -X PUT --input - <<'EOF'\n"
            f"{json.dumps(payload)}\n"
            "EOF"
        )

    report.checks.append(CheckResult(
        "No force push",
        state.no_force_push,
        "Force push blocked" if state.no_force_push else "Force push allowed on default branch",
        fix=None if state.no_force_push else protect_cmd,
    ))
    report.checks.append(CheckResult(
        "No branch deletion",
        state.no_deletion,
        "Deletion blocked" if state.no_deletion else "Branch deletion allowed",
        fix=None if state.no_deletion else protect_cmd,
    ))
    report.checks.append(CheckResult(
        "Signed commits required",
        state.require_signed_commits,
        "Required" if state.require_signed_commits else "Signed commits not required",
        fix=None if state.require_signed_commits else f"gh api {endpoint}/required_signatures -X POST",
    ))

    if state.require_pr:
        report.summary_ok = f"{subject} — All controls enabled (PR reviews: {state.required_reviewers})"
    else:
        report.summary_ok = f"{subject} — All controls enabled"
    return report


# =============================================================================
# Pre-commit secret scanning
# =============================================================================

def evaluate_precommit(text: Optional[str]) -> GuardReport:
    """
    Evaluate the reconciled .pre-commit-config.yaml text.

    A document that is not valid YAML fails both hook checks without a
    suggested fix: pre-commit cannot load it, whatever its text contains.
    """
    report = GuardReport(
        guard="pre-commit",
        title="Pre-commit guard",
        summary_ok="TruffleHog + Gitleaks secret scanning active",
    )
    text = text or ""
    trufflehog = trufflehog_block()
    gitleaks = gitleaks_block()
    document = HookConfigDocument(text)

    if document.blocks() is None:
        broken = f"{CONFIG_FILENAME} is not valid YAML; pre-commit cannot load it"
        report.checks.append(CheckResult("TruffleHog hook", False, broken))
        report.checks.append(CheckResult("Gitleaks hook", False, broken))
        report.checks.append(CheckResult(
            "TruffleHog OS-native binary", False, "Config unreadable, execution mode unknown",
        ))
        return report

    has_trufflehog = trufflehog.is_present(text)
    report.checks.append(CheckResult(
        "TruffleHog hook",
        has_trufflehog,
        "TruffleHog hook configured" if has_trufflehog else f"No TruffleHog hook in {CONFIG_FILENAME}",
        fix=None if has_trufflehog else f"Add to {CONFIG_FILENAME}:\n{trufflehog.block.render()}",
    ))

    has_gitleaks = gitleaks.is_present(text)
    detail = "Gitleaks hook configured"
    found = document.find_hook("gitleaks") if has_gitleaks else None
    if found is not None and found[0].rev:
        detail = f"Gitleaks hook configured ({found[0].rev})"
    report.checks.append(CheckResult(
        "Gitleaks hook",
        has_gitleaks,
        detail if has_gitleaks else f"No Gitleaks hook in {CONFIG_FILENAME}",
        fix=None if has_gitleaks else f"Add to {CONFIG_FILENAME}:\n{gitleaks.block.render()}",
    ))

    if not has_trufflehog:
        report.checks.append(CheckResult(
            "TruffleHog OS-native binary", False, "TruffleHog hook missing, execution mode unknown",
        ))
    elif hook_block_has_property(text, "trufflehog", "language", "system"):
        report.checks.append(CheckResult("TruffleHog OS-native binary", True, "language: system"))
    else:
        report.checks.append(CheckResult(
            "TruffleHog OS-native binary", False,
            "TruffleHog hook does not use language: system; left unchanged to keep the custom setup",
        ))
    return report
