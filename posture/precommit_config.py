"""
Config Reconciler - keep .pre-commit-config.yaml carrying the secret scanners.

The document is edited as text, not round-tripped through a YAML library:
hand-edited configs keep their comments, ordering and quoting, and a
document PyYAML cannot even parse still gets the missing blocks appended.
Membership is a substring test on the block's markers; blocks are only
ever appended, never reordered or removed. An append that would turn a
valid document into invalid YAML is refused with a warning instead.

Required blocks:
  - TruffleHog, local hook running the OS-native binary (language: system)
  - Gitleaks, pinned from the upstream repository

A TruffleHog block that exists but does not run the system binary is left
alone with a warning; it may be a deliberate custom setup.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from hooks.transaction import TransactionError, atomic_write_text
from posture.settings import DEFAULT_GITLEAKS_REV

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".pre-commit-config.yaml"
CONFIG_HEADER = (
    "# See https://pre-commit.com for more information\n"
    "# See https://pre-commit.com/hooks.html for more hooks\n"
)

_REPOS_KEY = re.compile(r"^repos\s*:", re.MULTILINE)
_LEADING_WS = re.compile(r"^[ \t]*")


# =============================================================================
# Document model
# =============================================================================

@dataclass
class HookSpec:
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    entry: Optional[str] = None
    language: Optional[str] = None
    stages: tuple[str, ...] = ()
    pass_filenames: Optional[bool] = None

    def render(self, indent: str = "      ") -> list[str]:
        inner = indent + "  "
        lines = [f"{indent}- id: {self.id}"]
        if self.name is not None:
            lines.append(f"{inner}name: {self.name}")
        if self.description is not None:
            lines.append(f"{inner}description: {self.description}")
        if self.entry is not None:
            lines.append(f"{inner}entry: {self.entry}")
        if self.language is not None:
            lines.append(f"{inner}language: {self.language}")
        if self.stages:
            stages = ", ".join(f'"{s}"' for s in self.stages)
            lines.append(f"{inner}stages: [{stages}]")
        if self.pass_filenames is not None:
            lines.append(f"{inner}pass_filenames: {'true' if self.pass_filenames else 'false'}")
        return lines

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "HookSpec":
        stages = data.get("stages") or ()
        pass_filenames = data.get("pass_filenames")
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name"),
            description=data.get("description"),
            entry=data.get("entry"),
            language=data.get("language"),
            stages=tuple(str(s) for s in stages) if isinstance(stages, list) else (),
            pass_filenames=pass_filenames if isinstance(pass_filenames, bool) else None,
        )


@dataclass
class HookBlock:
    """One entry of the top-level `repos:` list."""
    repo: str
    hooks: list[HookSpec] = field(default_factory=list)
    rev: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.repo == "local"

    def render(self) -> str:
        """YAML text for this block, indented as an item of `repos:`."""
        lines = [f"  - repo: {self.repo}"]
        if self.rev is not None:
            lines.append(f"    rev: {self.rev}")
        lines.append("    hooks:")
        for hook in self.hooks:
            lines.extend(hook.render())
        return "\n".join(lines)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "HookBlock":
        hooks = data.get("hooks") or []
        rev = data.get("rev")
        return cls(
            repo=str(data.get("repo", "")),
            rev=str(rev) if rev is not None else None,
            hooks=[HookSpec.from_mapping(h) for h in hooks if isinstance(h, dict)],
        )


@dataclass
class HookConfigDocument:
    """Raw document text plus a best-effort structured view."""
    text: str

    def blocks(self) -> Optional[list[HookBlock]]:
        """Parsed `repos:` entries, or None when the text is not valid YAML."""
        try:
            data = yaml.safe_load(self.text)
        except yaml.YAMLError:
            return None
        if data is None:
            return []
        if not isinstance(data, dict):
            return None
        repos = data.get("repos") or []
        if not isinstance(repos, list):
            return None
        return [HookBlock.from_mapping(r) for r in repos if isinstance(r, dict)]

    def find_hook(self, hook_id: str) -> Optional[tuple[HookBlock, HookSpec]]:
        for block in self.blocks() or []:
            for hook in block.hooks:
                if hook.id == hook_id:
                    return block, hook
        return None


# =============================================================================
# Required blocks
# =============================================================================

@dataclass(frozen=True)
class RequiredProperty:
    key: str
    value: str


@dataclass
class RequiredBlock:
    label: str
    hook_id: str
    block: HookBlock
    markers: tuple[str, ...]
    required_property: Optional[RequiredProperty] = None

    def is_present(self, text: str) -> bool:
        return any(marker in text for marker in self.markers)


def trufflehog_block() -> RequiredBlock:
    hook = HookSpec(
        id="trufflehog",
        name="TruffleHog",
        description="Detect secrets in your data.",
        entry="trufflehog git file://. --since-commit HEAD --results=verified,unknown --fail",
        language="system",
        stages=("pre-commit", "pre-push"),
        pass_filenames=False,
    )
    return RequiredBlock(
        label="TruffleHog",
        hook_id="trufflehog",
        block=HookBlock(repo="local", hooks=[hook]),
        markers=("trufflehog",),
        required_property=RequiredProperty("language", "system"),
    )


def gitleaks_block(rev: str = DEFAULT_GITLEAKS_REV) -> RequiredBlock:
    return RequiredBlock(
        label="Gitleaks",
        hook_id="gitleaks",
        block=HookBlock(repo="https://github.com/gitleaks/gitleaks", rev=rev, hooks=[HookSpec(id="gitleaks")]),
        markers=("id: gitleaks", "gitleaks/gitleaks"),
    )


# =============================================================================
# Text scanning
# =============================================================================

def _indent_width(line: str) -> int:
    return len(_LEADING_WS.match(line).group(0).expandtabs(2))


def hook_block_has_property(text: str, hook_id: str, key: str, value: str) -> bool:
    """
    Check that the hook introduced by `id: <hook_id>` declares `key: value`.

    The hook's extent is bounded by indentation: it ends at the first later
    line that starts a list item at an indent less than or equal to the
    `id:` line's indent. The property must appear strictly inside.
    """
    id_line = re.compile(r"^\s*(?:-\s+)?id\s*:\s*['\"]?" + re.escape(hook_id) + r"['\"]?\s*(?:#.*)?$")
    prop_line = re.compile(
        r"^\s*(?:-\s+)?" + re.escape(key) + r"\s*:\s*['\"]?" + re.escape(value) + r"['\"]?\s*(?:#.*)?$"
    )

    lines = text.splitlines()
    for index, line in enumerate(lines):
        if not id_line.match(line):
            continue
        indent = _indent_width(line)
        for inner in lines[index + 1:]:
            if not inner.strip():
                continue
            if _indent_width(inner) <= indent and inner.lstrip().startswith("- "):
                break
            if prop_line.match(inner):
                return True
        return False
    return False


# =============================================================================
# Reconciliation
# =============================================================================

@dataclass
class ReconcileResult:
    text: str
    added: bool = False
    warning: Optional[str] = None


def ensure_block(text: str, required: RequiredBlock) -> ReconcileResult:
    """
    Append ``required`` to the document unless it is already present.

    Idempotent: a second call on the returned text adds nothing and
    returns it unchanged.
    """
    if required.is_present(text):
        prop = required.required_property
        if prop is not None and not hook_block_has_property(text, required.hook_id, prop.key, prop.value):
            return ReconcileResult(
                text,
                warning=(
                    f"{required.label} hook exists but does not use {prop.key}: {prop.value}; "
                    "config left unchanged to avoid breaking a custom setup"
                ),
            )
        return ReconcileResult(text)

    base = text.rstrip()
    if not _REPOS_KEY.search(text):
        base = f"{base}\nrepos:" if base else "repos:"
    candidate = f"{base}\n{required.block.render()}\n"

    # A flow-style `repos: []` or a top-level key after the list cannot take
    # an appended item; only a document that already failed to parse may.
    if HookConfigDocument(text).blocks() is not None:
        if HookConfigDocument(candidate).find_hook(required.hook_id) is None:
            return ReconcileResult(
                text,
                warning=(
                    f"{required.label} hook could not be appended to {CONFIG_FILENAME} "
                    "without breaking its YAML structure; add it to the repos list manually"
                ),
            )
    return ReconcileResult(candidate, added=True)


@dataclass
class ReconcileOutcome:
    path: Path
    created: bool = False
    added: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    text: str = ""

    @property
    def actions(self) -> list[str]:
        actions = []
        if self.created:
            actions.append(f"Created {CONFIG_FILENAME}")
        actions.extend(f"Added {label} hook to config" for label in self.added)
        return actions


def required_blocks(gitleaks_rev: str = DEFAULT_GITLEAKS_REV) -> list[RequiredBlock]:
    return [trufflehog_block(), gitleaks_block(gitleaks_rev)]


def reconcile_config(root: Path, gitleaks_rev: str = DEFAULT_GITLEAKS_REV) -> ReconcileOutcome:
    """
    Make sure the repository's pre-commit config carries both scanners.

    Creates the file (header + blocks) when absent; otherwise appends only
    what is missing. The file is rewritten only when its text changed.
    """
    path = root / CONFIG_FILENAME
    outcome = ReconcileOutcome(path=path)

    original: Optional[str]
    try:
        original = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        original = None
    except (OSError, UnicodeDecodeError) as e:
        outcome.warnings.append(f"Could not read {CONFIG_FILENAME}: {e}")
        return outcome

    text = CONFIG_HEADER if original is None else original
    outcome.created = original is None

    for required in required_blocks(gitleaks_rev):
        result = ensure_block(text, required)
        text = result.text
        if result.added:
            outcome.added.append(required.label)
        if result.warning:
            outcome.warnings.append(result.warning)

    outcome.text = text
    if text == original:
        return outcome

    try:
        atomic_write_text(path, text)
    except TransactionError as e:
        logger.warning("failed to write %s: %s", path, e)
        outcome.warnings.append(f"Could not write {CONFIG_FILENAME}: {e}")
        outcome.created = False
        outcome.added = []
        outcome.text = original or ""
        return outcome

    logger.info("reconciled %s (created=%s, added=%s)", path, outcome.created, outcome.added)
    return outcome
