"""
Installer - best-effort provisioning of pre-commit and trufflehog.

Each tool has an ordered recipe of package-manager commands. A manager is
only used after its own `--version` probe answers quickly, so a missing
manager costs milliseconds instead of a slow failed install. Script-based
installs try the system bin directory first and fall back to ~/.local/bin.
Success is only claimed once the resolver can find a tool that runs.

Also registers the git hook (`pre-commit install`) and repairs the two WSL
artifacts a Windows pre-commit.exe leaves in the generated hook script:
CRLF line endings and a doubled shebang.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from hooks.compat import home_dir
from hooks.transaction import TransactionError, atomic_write_text
from posture.probe import git_path
from posture.resolver import resolve
from posture.runner import (
    HOOK_INSTALL_TIMEOUT,
    LOOKUP_TIMEOUT,
    PACKAGE_INSTALL_TIMEOUT,
    SCRIPT_INSTALL_TIMEOUT,
    run,
)
from posture.settings import DEFAULT_TRUFFLEHOG_INSTALL_URL

logger = logging.getLogger(__name__)

SYSTEM_BIN_DIR = Path("/usr/local/bin")
DUAL_SHEBANG = "#!/bin/sh\n#!/usr/bin/env bash"
PRE_COMMIT_MARKER = "pre-commit"


@dataclass(frozen=True)
class PackageCommand:
    """A package manager invocation: probe with `probe + --version`, then install."""
    probe: tuple[str, ...]
    install: tuple[str, ...]

    @property
    def label(self) -> str:
        return " ".join(self.probe)


def _pip(*prefix: str) -> PackageCommand:
    return PackageCommand(prefix, prefix + ("install", "pre-commit"))


@dataclass(frozen=True)
class ToolRecipe:
    name: str
    package_commands: tuple[PackageCommand, ...] = ()
    script_url: Optional[str] = None
    manual_hint: str = ""


PRE_COMMIT = ToolRecipe(
    name="pre-commit",
    package_commands=(
        PackageCommand(("pipx",), ("pipx", "install", "pre-commit")),
        _pip("pip3"),
        _pip("pip"),
        _pip("pip3.exe"),
        _pip("pip.exe"),
        _pip("python3", "-m", "pip"),
        _pip("python", "-m", "pip"),
    ),
    manual_hint="pip install pre-commit",
)

TRUFFLEHOG = ToolRecipe(
    name="trufflehog",
    package_commands=(
        PackageCommand(("brew",), ("brew", "install", "trufflehog")),
    ),
    script_url=DEFAULT_TRUFFLEHOG_INSTALL_URL,
    manual_hint=f"curl -sSfL {DEFAULT_TRUFFLEHOG_INSTALL_URL} | sh -s -- -b /usr/local/bin",
)

RECIPES = {recipe.name: recipe for recipe in (PRE_COMMIT, TRUFFLEHOG)}


@dataclass
class InstallResult:
    tool: str
    path: Optional[str] = None
    installed: bool = False
    detail: str = ""
    messages: list[str] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return self.path is not None


# =============================================================================
# Tool installation
# =============================================================================

def _try_package_commands(recipe: ToolRecipe, messages: list[str]) -> bool:
    for command in recipe.package_commands:
        if not run(list(command.probe) + ["--version"], timeout=LOOKUP_TIMEOUT).ok:
            continue
        result = run(list(command.install), timeout=PACKAGE_INSTALL_TIMEOUT)
        if result.ok:
            messages.append(f"Installed {recipe.name} (via {command.label})")
            return True
        logger.info("%s install via %s failed: %s", recipe.name, command.label, result.error_text)
    return False


def _script_destinations() -> list[Path]:
    destinations = []
    if SYSTEM_BIN_DIR.is_dir() and os.access(SYSTEM_BIN_DIR, os.W_OK):
        destinations.append(SYSTEM_BIN_DIR)
    destinations.append(Path(home_dir()) / ".local" / "bin")
    return destinations


def _try_install_script(recipe: ToolRecipe, url: str, messages: list[str]) -> bool:
    download = run(["curl", "-sSfL", url], timeout=SCRIPT_INSTALL_TIMEOUT)
    if not download.ok:
        logger.info("could not download %s install script: %s", recipe.name, download.error_text)
        return False

    for destination in _script_destinations():
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.info("cannot create %s: %s", destination, e)
            continue
        result = run(
            ["sh", "-s", "--", "-b", str(destination)],
            input_text=download.stdout,
            timeout=SCRIPT_INSTALL_TIMEOUT,
        )
        if result.ok:
            messages.append(f"Installed {recipe.name} to {destination}")
            if destination != SYSTEM_BIN_DIR:
                _ensure_on_path(destination)
            return True
        logger.info("%s install into %s failed: %s", recipe.name, destination, result.error_text)
    return False


def _ensure_on_path(directory: Path) -> None:
    """Make a freshly used user bin dir visible to the resolver in this process."""
    entries = os.environ.get("PATH", "").split(os.pathsep)
    if str(directory) not in entries:
        os.environ["PATH"] = os.pathsep.join([str(directory)] + [e for e in entries if e])


def ensure_available(
    tool: str,
    allow_install: bool = True,
    script_url: Optional[str] = None,
    resolver: Callable[[str], Optional[str]] = resolve,
) -> InstallResult:
    """
    Resolve a tool, installing it when missing.

    Args:
        tool: Recipe name ("pre-commit" or "trufflehog")
        allow_install: False to only resolve
        script_url: Override for the recipe's install script URL
        resolver: Resolution function (injected in tests)

    Returns:
        InstallResult; path is None when the tool is unavailable.
    """
    recipe = RECIPES[tool]
    found = resolver(tool)
    if found:
        return InstallResult(tool, path=found)

    if not allow_install:
        return InstallResult(tool, detail=f"{tool} not found (installation disabled). Install manually: {recipe.manual_hint}")

    logger.info("%s not found, installing", tool)
    messages: list[str] = []
    installed = _try_package_commands(recipe, messages)
    url = script_url or recipe.script_url
    if not installed and url:
        installed = _try_install_script(recipe, url, messages)

    if not installed:
        return InstallResult(tool, detail=f"Failed to install {tool}. Install manually: {recipe.manual_hint}", messages=messages)

    found = resolver(tool)
    if not found:
        return InstallResult(tool, detail=f"{tool} installed but not found on PATH", messages=messages)
    return InstallResult(tool, path=found, installed=True, messages=messages)


# =============================================================================
# Git hook registration
# =============================================================================

def normalize_hook_script(content: str) -> str:
    """Strip CRLF and collapse the `#!/bin/sh` + `#!/usr/bin/env bash` pair."""
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    if content.startswith(DUAL_SHEBANG):
        content = "#!/usr/bin/env bash" + content[len(DUAL_SHEBANG):]
    return content


def hook_script_path(root: Path) -> Path:
    return git_path(root, "hooks/pre-commit")


def needs_hook_install(hook_path: Path) -> bool:
    """True when the git pre-commit hook is absent or not managed by pre-commit."""
    try:
        return PRE_COMMIT_MARKER not in hook_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return True


def repair_hook_script(hook_path: Path) -> bool:
    """Rewrite the hook script in place if it carries WSL artifacts."""
    try:
        content = hook_path.read_bytes().decode("utf-8", errors="replace")
    except OSError:
        return False
    fixed = normalize_hook_script(content)
    if fixed == content:
        return False
    try:
        atomic_write_text(hook_path, fixed)
    except TransactionError as e:
        logger.warning("could not repair %s: %s", hook_path, e)
        return False
    return True


@dataclass
class HookInstallResult:
    installed: bool = False
    repaired: bool = False
    error: Optional[str] = None


def install_git_hook(root: Path, pre_commit_cmd: str) -> HookInstallResult:
    """Run `pre-commit install` when needed, then repair the generated script."""
    hook_path = hook_script_path(root)
    outcome = HookInstallResult()

    if needs_hook_install(hook_path):
        result = run([pre_commit_cmd, "install"], cwd=str(root), timeout=HOOK_INSTALL_TIMEOUT)
        if not result.ok:
            outcome.error = result.error_text
            return outcome
        outcome.installed = True

    if hook_path.exists():
        outcome.repaired = repair_hook_script(hook_path)
    return outcome
